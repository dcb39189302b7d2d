# src/homework_dock/tasks/task_store.py

from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from ..core.errors import TaskNotFoundError
from ..core.ports import KeyValueStore
from .task_models import DEFAULT_SUBJECT, TASK_FIELDS, Task, TaskMeta, TaskSource

logger = logging.getLogger(__name__)

TASKS_KEY = "homework.tasks.v1"

_READONLY_FIELDS = frozenset({"id", "created_at"})


def tasks_key_for_user(user_id: str | None) -> str:
    return f"{TASKS_KEY}::u:{user_id or 'anon'}"


def make_task_id() -> str:
    return f"task_{uuid.uuid4().hex[:12]}"


class PersistMode(StrEnum):
    """How much of the task list made it into durable storage on the last persist()."""

    FULL = "full"
    TRIMMED = "trimmed"
    FAILED = "failed"


class TaskStore:
    """
    Per-user task list kept in memory and mirrored into a KeyValueStore.

    The in-memory list is authoritative for the running session; persist()
    only decides how much of it survives a reload. Write failures degrade
    durability and are never raised to callers.
    """

    def __init__(self, kv: KeyValueStore, user_id: str | None = None, *, max_persisted: int = 30) -> None:
        self._kv = kv
        self._user_id = user_id
        self._key = tasks_key_for_user(user_id)
        self._max_persisted = max(1, int(max_persisted))
        self._tasks: dict[str, Task] = {}
        self.last_persist_mode: PersistMode | None = None
        # Called with the ids of tasks dropped by a trimmed persist.
        self.on_pruned: Callable[[list[str]], None] | None = None
        self._load()
        logger.info("TaskStore ready key=%s total=%s", self._key, len(self._tasks))

    @property
    def user_id(self) -> str | None:
        return self._user_id

    # ---- low-level helpers ----

    def _load(self) -> None:
        raw = self._kv.load(self._key)
        if raw is None:
            return
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed tasks record key=%s type=%s", self._key, type(raw).__name__)
            return
        # Stored newest-first; rebuild in insertion (oldest-first) order.
        for item in reversed(raw):
            if not isinstance(item, dict):
                continue
            task = Task.from_dict(item)
            if task is not None:
                self._tasks[task.id] = task

    def _safe_save(self, tasks: list[Task]) -> bool:
        payload = [t.to_dict() for t in tasks]
        try:
            return bool(self._kv.save(self._key, payload))
        except Exception:
            # Adapters promise not to raise; a broken one must not take the session down.
            logger.exception("KeyValueStore.save raised key=%s", self._key)
            return False

    # ---- public API ----

    def create(self, meta: TaskMeta | None = None) -> Task:
        """
        Create a task, or update it in place when meta.task_id already exists.

        Creation is idempotent by id: the store never holds two records with one id.
        """
        meta = meta or TaskMeta()
        now = time.time()
        changes = meta.changes()

        existing = self._tasks.get(meta.task_id) if meta.task_id else None
        if existing is not None:
            task = dataclasses.replace(existing, **changes, updated_at=now)
            logger.debug("Task updated via create id=%s fields=%s", task.id, sorted(changes))
        else:
            changes.setdefault("subject", DEFAULT_SUBJECT)
            changes.setdefault("what", "")
            changes.setdefault("description", "")
            changes.setdefault("source", TaskSource.MANUAL)
            changes.setdefault("user_id", self._user_id)
            task = Task(
                id=meta.task_id or make_task_id(),
                created_at=now,
                updated_at=now,
                **changes,
            )
            logger.debug("Task created id=%s source=%s", task.id, task.source.value)

        self._tasks[task.id] = task
        return task

    def update(self, task_id: str, **changes: Any) -> Task:
        """Merge changes into an existing task and bump updated_at."""
        existing = self._tasks.get(task_id)
        if existing is None:
            raise TaskNotFoundError(task_id)

        unknown = set(changes) - TASK_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)}")
        readonly = set(changes) & _READONLY_FIELDS
        if readonly:
            raise ValueError(f"Read-only task fields: {sorted(readonly)}")

        changes.pop("updated_at", None)
        task = dataclasses.replace(existing, **changes, updated_at=time.time())
        self._tasks[task_id] = task
        return task

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def list(self) -> list[Task]:
        """Tasks ordered newest-first by created_at (ties: most recently inserted first)."""
        return sorted(reversed(self._tasks.values()), key=lambda t: t.created_at, reverse=True)

    def mark_done(self, task_id: str) -> Task:
        now = time.time()
        task = self.update(task_id, done=True, completed_at=now)
        logger.info("Task %s -> done", task_id)
        return task

    def delete(self, task_id: str) -> bool:
        removed = self._tasks.pop(task_id, None) is not None
        if removed:
            logger.info("Task %s deleted", task_id)
        return removed

    def find_by_signature(self, signature: str, *, exclude_id: str | None = None) -> Task | None:
        if not signature:
            return None
        for task in self.list():
            if task.id != exclude_id and task.signature == signature:
                return task
        return None

    def persist(self) -> PersistMode:
        """
        Write the task list to durable storage.

        On failure retry once with only the most recent tasks (by created_at).
        If that works, the older tasks are pruned from memory too so the
        session matches what a reload would see. If it also fails, memory is
        left untouched and only durability is degraded.
        """
        tasks = self.list()

        if self._safe_save(tasks):
            self.last_persist_mode = PersistMode.FULL
            return PersistMode.FULL

        trimmed = tasks[: self._max_persisted]
        logger.warning(
            "Task persist failed key=%s total=%s; retrying with %s most recent",
            self._key,
            len(tasks),
            len(trimmed),
        )
        if self._safe_save(trimmed):
            dropped = [t.id for t in tasks[self._max_persisted :]]
            for task_id in dropped:
                self._tasks.pop(task_id, None)
            if dropped:
                logger.info("Pruned %s oldest tasks to fit storage quota", len(dropped))
                if self.on_pruned is not None:
                    try:
                        self.on_pruned(dropped)
                    except Exception:
                        logger.exception("on_pruned listener failed key=%s", self._key)
            self.last_persist_mode = PersistMode.TRIMMED
            return PersistMode.TRIMMED

        logger.error("Task persist failed after trimming key=%s; keeping tasks in memory only", self._key)
        self.last_persist_mode = PersistMode.FAILED
        return PersistMode.FAILED
