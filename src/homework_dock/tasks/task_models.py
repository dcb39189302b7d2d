# src/homework_dock/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import StrEnum
from typing import Any


class TaskSource(StrEnum):
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    MANUAL = "manual"

    @classmethod
    def from_raw(cls, raw: Any) -> TaskSource:
        if not raw:
            return cls.MANUAL
        try:
            return cls(str(raw))
        except ValueError:
            return cls.MANUAL


DEFAULT_SUBJECT = "Sonstiges"


# Python attribute -> persisted JSON key (the tasks record keeps the web client's camelCase layout).
_JSON_KEYS: dict[str, str] = {
    "id": "id",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "subject": "subject",
    "what": "what",
    "description": "description",
    "source": "source",
    "user_id": "userId",
    "done": "done",
    "completed_at": "completedAt",
    "scan_id": "scanId",
    "conversation_id": "conversationId",
    "file_name": "fileName",
    "file_type": "fileType",
    "has_image": "hasImage",
    "signature": "signature",
}


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    created_at: float
    updated_at: float

    subject: str
    what: str
    description: str
    source: TaskSource

    user_id: str | None = None
    done: bool = False
    completed_at: float | None = None

    # Written by the scan pipeline; a newer run overwrites, a failed run never clears.
    scan_id: str | None = None
    conversation_id: str | None = None

    file_name: str | None = None
    file_type: str | None = None
    has_image: bool = False
    signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, key in _JSON_KEYS.items():
            val = getattr(self, name)
            out[key] = val.value if isinstance(val, TaskSource) else val
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task | None:
        """Tolerant loader: unknown keys are ignored, missing keys get defaults; no id -> None."""
        task_id = data.get("id")
        if not task_id:
            return None

        def _f(key: str, default: float = 0.0) -> float:
            try:
                return float(data.get(key) or default)
            except (TypeError, ValueError):
                return default

        def _opt_str(key: str) -> str | None:
            val = data.get(key)
            return str(val) if val not in (None, "") else None

        completed = data.get("completedAt")
        return cls(
            id=str(task_id),
            created_at=_f("createdAt"),
            updated_at=_f("updatedAt"),
            subject=str(data.get("subject") or DEFAULT_SUBJECT),
            what=str(data.get("what") or ""),
            description=str(data.get("description") or ""),
            source=TaskSource.from_raw(data.get("source")),
            user_id=_opt_str("userId"),
            done=bool(data.get("done", False)),
            completed_at=_f("completedAt") if completed is not None else None,
            scan_id=_opt_str("scanId"),
            conversation_id=_opt_str("conversationId"),
            file_name=_opt_str("fileName"),
            file_type=_opt_str("fileType"),
            has_image=bool(data.get("hasImage", False)),
            signature=_opt_str("signature"),
        )


TASK_FIELDS: frozenset[str] = frozenset(f.name for f in fields(Task))


@dataclass(slots=True)
class TaskMeta:
    """
    Capture metadata passed to TaskStore.create().

    None means "not provided": on create the store falls back to defaults,
    on an existing task id the stored value is kept.
    """

    task_id: str | None = None
    subject: str | None = None
    what: str | None = None
    description: str | None = None
    source: TaskSource | None = None
    user_id: str | None = None
    file_name: str | None = None
    file_type: str | None = None
    has_image: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Fields that were explicitly provided, as Task attribute names."""
        out: dict[str, Any] = {}
        for name in ("subject", "what", "description", "source", "user_id", "file_name", "file_type", "has_image"):
            val = getattr(self, name)
            if val is not None:
                out[name] = val
        return out
