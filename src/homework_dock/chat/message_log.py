# src/homework_dock/chat/message_log.py

"""
Ordered, scoped chat transcripts.

Each (mode, task_id) scope holds an ordered list of ChatMessage. The log
mutates its in-memory lists, mirrors each touched scope into the
KeyValueStore, and notifies subscribers; renderers pull the current
snapshot via get().

Key invariants:
- insertion order is preserved; replace never moves an element,
- a message id appears at most once per scope (append skips known ids),
- filter_out never removes student messages.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Iterable

from ..core.ports import KeyValueStore, MessageListener
from .messages import ChatMessage, ScopeKey

logger = logging.getLogger(__name__)

CHAT_NS = "homework.chat.v1"

MessageProducer = Callable[[ChatMessage], ChatMessage] | Callable[[], ChatMessage]


def _call_producer(producer: MessageProducer, old: ChatMessage) -> ChatMessage:
    try:
        nparams = len(inspect.signature(producer).parameters)
    except (TypeError, ValueError):
        nparams = 1
    if nparams == 0:
        return producer()  # type: ignore[call-arg]
    return producer(old)  # type: ignore[call-arg]


class MessageLog:
    def __init__(self, kv: KeyValueStore, *, namespace: str = CHAT_NS) -> None:
        self._kv = kv
        self._namespace = namespace
        self._scopes: dict[ScopeKey, list[ChatMessage]] = {}
        self._listeners: list[MessageListener] = []

    # ---- low-level helpers ----

    def _scope(self, mode: str, task_id: str) -> tuple[ScopeKey, list[ChatMessage]]:
        key = ScopeKey(mode, task_id)
        messages = self._scopes.get(key)
        if messages is None:
            messages = self._load(key)
            self._scopes[key] = messages
        return key, messages

    def _load(self, key: ScopeKey) -> list[ChatMessage]:
        raw = self._kv.load(key.storage_key(self._namespace))
        if not isinstance(raw, list):
            return []
        out: list[ChatMessage] = []
        seen: set[str] = set()
        for item in raw:
            if not isinstance(item, dict):
                continue
            msg = ChatMessage.from_dict(item)
            if msg is None or msg.id in seen:
                continue
            seen.add(msg.id)
            out.append(msg)
        return out

    def _commit(self, key: ScopeKey) -> None:
        messages = self._scopes.get(key, [])
        storage_key = key.storage_key(self._namespace)
        try:
            ok = self._kv.save(storage_key, [m.to_dict() for m in messages])
        except Exception:
            logger.exception("KeyValueStore.save raised key=%s", storage_key)
            ok = False
        if not ok:
            logger.warning("Chat scope not persisted key=%s messages=%s", storage_key, len(messages))

        snapshot = list(messages)
        for listener in list(self._listeners):
            try:
                listener(key, snapshot)
            except Exception:
                logger.exception("Message listener failed scope=%s", key)

    # ---- public API ----

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def get(self, mode: str, task_id: str) -> list[ChatMessage]:
        _, messages = self._scope(mode, task_id)
        return list(messages)

    def append(self, mode: str, task_id: str, messages: Iterable[ChatMessage]) -> list[ChatMessage]:
        """Append in arrival order; ids already present in the scope are skipped."""
        key, current = self._scope(mode, task_id)
        seen = {m.id for m in current}
        added: list[ChatMessage] = []
        for msg in messages:
            if msg is None or msg.id in seen:
                continue
            seen.add(msg.id)
            current.append(msg)
            added.append(msg)
        if added:
            self._commit(key)
        return added

    def replace_by_id(self, mode: str, task_id: str, message_id: str, producer: MessageProducer) -> bool:
        """
        Substitute the message with message_id at the same index.

        Missing id is a no-op (returns False): a concurrent filter may already
        have removed a placeholder, which is the desired end state anyway.
        """
        key, current = self._scope(mode, task_id)
        for idx, msg in enumerate(current):
            if msg.id != message_id:
                continue
            current[idx] = _call_producer(producer, msg)
            self._commit(key)
            return True
        logger.debug("replace_by_id: %s not in scope %s", message_id, key)
        return False

    def filter_out(self, mode: str, task_id: str, predicate: Callable[[ChatMessage], bool]) -> int:
        """Remove matching messages (student messages always stay). Returns the number removed."""
        key, current = self._scope(mode, task_id)
        kept = [m for m in current if m.from_student or not predicate(m)]
        removed = len(current) - len(kept)
        if removed:
            current[:] = kept
            self._commit(key)
        return removed

    def set(self, mode: str, task_id: str, messages: Iterable[ChatMessage]) -> None:
        key, current = self._scope(mode, task_id)
        current.clear()
        seen: set[str] = set()
        for msg in messages:
            if msg.id in seen:
                continue
            seen.add(msg.id)
            current.append(msg)
        self._commit(key)

    def clear(self, mode: str, task_id: str) -> None:
        key = ScopeKey(mode, task_id)
        self._scopes[key] = []
        self._kv.remove(key.storage_key(self._namespace))
        for listener in list(self._listeners):
            try:
                listener(key, [])
            except Exception:
                logger.exception("Message listener failed scope=%s", key)
