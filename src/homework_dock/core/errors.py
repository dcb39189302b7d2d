# src/homework_dock/core/errors.py

from __future__ import annotations


class HomeworkDockError(Exception):
    """Base class for all errors raised by homework_dock."""


class TaskNotFoundError(HomeworkDockError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


class QuotaExceededError(HomeworkDockError):
    """Raised inside storage adapters when a payload exceeds the configured quota."""

    def __init__(self, key: str, size: int, limit: int) -> None:
        super().__init__(f"Quota exceeded for key={key!r}: {size} > {limit} bytes")
        self.key = key
        self.size = size
        self.limit = limit


class PipelineError(HomeworkDockError):
    """A pipeline step failed. Always converted into a chat message, never surfaced raw."""


class CompressionError(PipelineError):
    pass


class UploadError(PipelineError):
    """
    Transport or HTTP failure of the upload/analyze call.

    status is None for network errors (no HTTP response at all).
    """

    def __init__(self, detail: str, *, status: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status = status


class MalformedResponseError(PipelineError):
    """HTTP 2xx, but the payload is unusable (not JSON, success=false, no scan id)."""


def friendly_upload_error_message(err: Exception) -> str:
    """Agent-voiced text for the chat transcript (the learner sees this)."""
    if isinstance(err, UploadError):
        status = err.status if err.status is not None else "?"
        detail = (err.detail or "").strip() or "Unbekannter Fehler"
        return f"Analyse fehlgeschlagen ({status}). {detail}"
    if isinstance(err, MalformedResponseError):
        return "Die Analyse hat kein brauchbares Ergebnis geliefert. Bitte versuche es erneut."
    msg = str(err).strip()
    return msg or "Ein Fehler ist aufgetreten. Bitte versuche es erneut."
