# src/homework_dock/tasks/progress.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum

from ..core.ports import KeyValueStore
from .task_models import Task

logger = logging.getLogger(__name__)

PROGRESS_KEY = "homework.progress.v1"


def progress_key_for_user(user_id: str | None) -> str:
    return f"{PROGRESS_KEY}::u:{user_id or 'anon'}"


class ProgressStep(IntEnum):
    """Which homework screen a resumed session should land on (0 = nothing to resume)."""

    NONE = 0
    DOING = 1
    CHAT = 2
    FEEDBACK = 3


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    step: ProgressStep
    task_id: str | None
    task: Task | None


class ProgressTracker:
    """Best-effort record of the most recently touched task, for resuming after reload."""

    def __init__(self, kv: KeyValueStore, user_id: str | None = None) -> None:
        self._kv = kv
        self._key = progress_key_for_user(user_id)

    def write(self, step: ProgressStep, task: Task | None) -> bool:
        payload = {
            "step": int(step),
            "taskId": task.id if task is not None else None,
            "task": task.to_dict() if task is not None else None,
        }
        ok = self._kv.save(self._key, payload)
        if not ok:
            logger.warning("Progress write failed key=%s step=%s", self._key, int(step))
        return ok

    def read(self) -> ProgressRecord | None:
        raw = self._kv.load(self._key)
        if not isinstance(raw, dict):
            return None
        try:
            step = ProgressStep(int(raw.get("step") or 0))
        except (TypeError, ValueError):
            step = ProgressStep.NONE

        task_raw = raw.get("task")
        task = Task.from_dict(task_raw) if isinstance(task_raw, dict) else None
        task_id = raw.get("taskId") or (task.id if task is not None else None)
        return ProgressRecord(step=step, task_id=str(task_id) if task_id else None, task=task)

    def clear(self) -> None:
        self._kv.remove(self._key)
