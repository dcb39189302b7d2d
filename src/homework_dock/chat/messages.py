# src/homework_dock/chat/messages.py

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, NamedTuple


class MessageFrom(StrEnum):
    AGENT = "agent"
    STUDENT = "student"


class MessageType(StrEnum):
    TEXT = "text"
    STATUS = "status"
    TABLE = "table"
    TIP = "tip"
    IMAGE = "image"
    ERROR = "error"


class ScopeKey(NamedTuple):
    """One chat transcript: (mode, task_id)."""

    mode: str
    task_id: str

    def storage_key(self, namespace: str) -> str:
        return f"{namespace}:{self.mode}:{self.task_id}"


@dataclass(frozen=True, slots=True)
class ChatMessage:
    id: str
    sender: MessageFrom
    type: MessageType
    content: Any
    timestamp: float
    transient: bool = False
    agent_name: str | None = None
    # Pipeline run that produced this message (None for anything typed or seeded).
    run_id: str | None = None

    @property
    def from_student(self) -> bool:
        return self.sender == MessageFrom.STUDENT

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "from": self.sender.value,
            "type": self.type.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.transient:
            out["transient"] = True
        if self.agent_name:
            out["agentName"] = self.agent_name
        if self.run_id:
            out["runId"] = self.run_id
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage | None:
        msg_id = data.get("id")
        if msg_id in (None, ""):
            return None
        try:
            sender = MessageFrom(str(data.get("from") or data.get("sender") or "agent"))
        except ValueError:
            sender = MessageFrom.AGENT
        try:
            mtype = MessageType(str(data.get("type") or "text"))
        except ValueError:
            mtype = MessageType.TEXT
        try:
            ts = float(data.get("timestamp") or 0.0)
        except (TypeError, ValueError):
            ts = 0.0
        return cls(
            id=str(msg_id),
            sender=sender,
            type=mtype,
            content=data.get("content"),
            timestamp=ts,
            transient=bool(data.get("transient", False)),
            agent_name=data.get("agentName") or None,
            run_id=data.get("runId") or None,
        )


def make_message(
    content: Any,
    sender: MessageFrom | str = MessageFrom.AGENT,
    type: MessageType | str = MessageType.TEXT,
    *,
    transient: bool = False,
    agent_name: str | None = None,
    run_id: str | None = None,
) -> ChatMessage:
    return ChatMessage(
        id=uuid.uuid4().hex,
        sender=MessageFrom(sender),
        type=MessageType(type),
        content=content,
        timestamp=time.time(),
        transient=transient,
        agent_name=agent_name,
        run_id=run_id,
    )


_SCAN_TYPES = frozenset({MessageType.TABLE, MessageType.TIP, MessageType.STATUS})


def is_scan_derived(message: ChatMessage) -> bool:
    """
    Content that belongs to one analysis of the worksheet.

    A rescan replaces all of it; student messages never count.
    """
    if message.from_student:
        return False
    return message.type in _SCAN_TYPES or message.run_id is not None
