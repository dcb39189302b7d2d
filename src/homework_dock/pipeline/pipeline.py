# src/homework_dock/pipeline/pipeline.py

from __future__ import annotations

"""
Scan pipeline: compress -> upload (server analyzes in the same call) -> chat messages.

A run is a single awaitable:
- appends one transient status placeholder to the task's chat scope,
- runs each step as a StepResult (value or error, never raised),
- settles by substituting the placeholder exactly once: with the first
  result message on success, with one agent error message on failure.

Runs for the same task are not cancelled. Each run gets a run_id; the most
recently started run is authoritative. A run that settles after a newer one
started only removes its own placeholder and reports SUPERSEDED.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from ..chat.message_log import MessageLog
from ..chat.messages import ChatMessage, MessageFrom, MessageType, is_scan_derived, make_message
from ..core.errors import (
    CompressionError,
    PipelineError,
    TaskNotFoundError,
    UploadError,
    friendly_upload_error_message,
)
from ..core.ports import ImageCompressor, Uploader
from ..tasks.task_models import Task
from ..tasks.task_store import TaskStore
from .artifacts import Artifact
from .signature import worksheet_signature
from .upload_client import ScanResult, parse_scan_response

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_UPLOADING = "Datei wird hochgeladen und analysiert…"
TEXT_NOTHING_EXTRACTED = "Ich habe das Dokument erhalten, konnte aber nichts Brauchbares extrahieren."
TEXT_TIP = (
    "💡 Tipp: Versuche zuerst selbst, die Fragen zu beantworten. "
    "Wenn du Hilfe brauchst oder nicht weiterkommst, frage mich einfach!"
)
TEXT_UNEXPECTED_UPLOAD = "Unerwarteter Fehler beim Hochladen"
TEXT_PROCESSING_FAILED = "Das Ergebnis konnte nicht verarbeitet werden. Bitte versuche es erneut."

SUBJECT_EMOJI = {
    "Mathe": "🔢",
    "Deutsch": "📗",
    "Englisch": "🇬🇧",
    "Sachkunde": "🔬",
    "Erdkunde": "🌍",
    "Kunst": "🎨",
    "Musik": "🎵",
    "Sport": "⚽",
}


class PipelineState(str, Enum):
    IDLE = "idle"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"
    SUPERSEDED = "superseded"


@dataclass(frozen=True, slots=True)
class StepResult(Generic[T]):
    value: T | None = None
    error: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> StepResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: PipelineError) -> StepResult[T]:
        return cls(error=error)


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    state: PipelineState
    run_id: str
    task: Task | None
    scan: ScanResult | None = None
    error: PipelineError | None = None
    duplicate_of: str | None = None


TaskListener = Callable[[Task], None]


def subject_message_text(subject: str) -> str:
    return f"{SUBJECT_EMOJI.get(subject, '📚')} Subject: {subject}"


class ScanPipeline:
    def __init__(
        self,
        task_store: TaskStore,
        message_log: MessageLog,
        uploader: Uploader,
        compressor: ImageCompressor | None = None,
        *,
        mode: str = "homework",
        agent_name: str | None = None,
        on_task_updated: TaskListener | None = None,
    ) -> None:
        self._tasks = task_store
        self._log = message_log
        self._uploader = uploader
        self._compressor = compressor
        self._mode = mode
        self._agent_name = agent_name
        self.on_task_updated = on_task_updated

        self._latest_run: dict[str, str] = {}
        self._states: dict[str, PipelineState] = {}

    # ---- state tracking ----

    def state(self, task_id: str) -> PipelineState:
        return self._states.get(task_id, PipelineState.IDLE)

    def _set_state(self, task_id: str, run_id: str, state: PipelineState) -> None:
        # Only the authoritative run drives the visible state of a task.
        if self._latest_run.get(task_id) == run_id:
            self._states[task_id] = state
        logger.debug("Pipeline task=%s run=%s -> %s", task_id, run_id, state.value)

    def is_current(self, task_id: str, run_id: str) -> bool:
        return self._latest_run.get(task_id) == run_id

    # ---- message helpers ----

    def _agent(self, content: Any, type: MessageType = MessageType.TEXT, *, run_id: str, transient: bool = False) -> ChatMessage:
        return make_message(
            content,
            MessageFrom.AGENT,
            type,
            transient=transient,
            agent_name=self._agent_name,
            run_id=run_id,
        )

    def build_result_messages(self, scan: ScanResult, *, run_id: str) -> list[ChatMessage]:
        """Subject (if detected), result table (answers never included), tip."""
        out: list[ChatMessage] = []
        if scan.subject:
            out.append(self._agent(subject_message_text(scan.subject), run_id=run_id))

        if scan.extracted_text or scan.questions:
            out.append(
                self._agent(
                    {"extractedText": scan.extracted_text, "questions": list(scan.questions)},
                    MessageType.TABLE,
                    run_id=run_id,
                )
            )
        else:
            out.append(self._agent(TEXT_NOTHING_EXTRACTED, run_id=run_id))

        out.append(self._agent(TEXT_TIP, MessageType.TIP, run_id=run_id))
        return out

    # ---- steps ----

    async def _compress(self, artifact: Artifact) -> StepResult[Artifact]:
        if self._compressor is None or not artifact.is_image:
            return StepResult.success(artifact)
        try:
            return StepResult.success(await asyncio.to_thread(self._compressor.compress, artifact))
        except CompressionError as e:
            return StepResult.failure(e)
        except Exception as e:
            logger.exception("Compressor failed name=%s", artifact.name)
            return StepResult.failure(CompressionError(f"{e.__class__.__name__}: {e}"))

    async def _upload(self, artifact: Artifact) -> StepResult[dict[str, Any]]:
        try:
            return StepResult.success(await self._uploader.upload(artifact))
        except PipelineError as e:
            return StepResult.failure(e)
        except OSError as e:
            # Network errors from uploaders that do not wrap their transport exceptions.
            return StepResult.failure(UploadError(str(e) or e.__class__.__name__))
        except Exception:
            logger.exception("Uploader failed name=%s", artifact.name)
            return StepResult.failure(UploadError(TEXT_UNEXPECTED_UPLOAD))

    @staticmethod
    def _analyze(payload: dict[str, Any]) -> StepResult[ScanResult]:
        try:
            return StepResult.success(parse_scan_response(payload))
        except PipelineError as e:
            return StepResult.failure(e)
        except Exception:
            logger.exception("Unparseable scan response")
            return StepResult.failure(PipelineError(TEXT_PROCESSING_FAILED))

    # ---- run ----

    async def run(self, task_id: str, artifact: Artifact) -> PipelineOutcome:
        run_id = uuid.uuid4().hex
        prior = self._latest_run.get(task_id)
        self._latest_run[task_id] = run_id
        if prior is not None and self._states.get(task_id) not in (
            PipelineState.COMPLETED,
            PipelineState.FAILED,
            PipelineState.SUPERSEDED,
        ):
            logger.info("Pipeline task=%s: run %s supersedes in-flight run %s", task_id, run_id, prior)

        placeholder = self._agent(STATUS_UPLOADING, MessageType.STATUS, run_id=run_id, transient=True)
        self._log.append(self._mode, task_id, [placeholder])

        self._set_state(task_id, run_id, PipelineState.COMPRESSING)
        prepared = await self._compress(artifact)
        if not prepared.ok:
            # A photo we cannot re-encode is still worth sending as-is.
            logger.warning("Pipeline task=%s: %s; uploading original", task_id, prepared.error)
            prepared = StepResult.success(artifact)

        self._set_state(task_id, run_id, PipelineState.UPLOADING)
        uploaded = await self._upload(prepared.value or artifact)

        scan_step: StepResult[ScanResult]
        if uploaded.ok and uploaded.value is not None:
            self._set_state(task_id, run_id, PipelineState.ANALYZING)
            scan_step = self._analyze(uploaded.value)
        else:
            scan_step = StepResult.failure(uploaded.error or PipelineError("Upload failed"))

        if not self.is_current(task_id, run_id):
            return self._settle_superseded(task_id, run_id, placeholder, scan_step)

        if not scan_step.ok or scan_step.value is None:
            return self._settle_failure(task_id, run_id, placeholder, scan_step.error)

        try:
            return self._settle_success(task_id, run_id, placeholder, scan_step.value, prepared.value or artifact)
        except Exception:
            # The placeholder must still be resolved; the learner gets one error message.
            logger.exception("Pipeline task=%s run=%s: settling the result failed", task_id, run_id)
            return self._settle_failure(task_id, run_id, placeholder, PipelineError(TEXT_PROCESSING_FAILED))

    # ---- settling ----

    def _settle_superseded(
        self,
        task_id: str,
        run_id: str,
        placeholder: ChatMessage,
        scan_step: StepResult[ScanResult],
    ) -> PipelineOutcome:
        self._log.filter_out(self._mode, task_id, lambda m: m.id == placeholder.id)
        logger.info(
            "Pipeline task=%s run=%s superseded (result ok=%s); discarding",
            task_id,
            run_id,
            scan_step.ok,
        )
        return PipelineOutcome(
            state=PipelineState.SUPERSEDED,
            run_id=run_id,
            task=self._tasks.get(task_id),
            scan=scan_step.value,
            error=scan_step.error,
        )

    def _settle_failure(
        self,
        task_id: str,
        run_id: str,
        placeholder: ChatMessage,
        error: PipelineError | None,
    ) -> PipelineOutcome:
        error = error or PipelineError("Upload failed")
        logger.warning("Pipeline task=%s run=%s failed: %s", task_id, run_id, error)

        message = self._agent(friendly_upload_error_message(error), MessageType.ERROR, run_id=run_id)
        if not self._log.replace_by_id(self._mode, task_id, placeholder.id, lambda: message):
            self._log.append(self._mode, task_id, [message])
        self._set_state(task_id, run_id, PipelineState.FAILED)
        return PipelineOutcome(
            state=PipelineState.FAILED,
            run_id=run_id,
            task=self._tasks.get(task_id),
            error=error,
        )

    def _settle_success(
        self,
        task_id: str,
        run_id: str,
        placeholder: ChatMessage,
        scan: ScanResult,
        uploaded: Artifact,
    ) -> PipelineOutcome:
        signature = worksheet_signature(uploaded, scan.extracted_text)
        duplicate = self._tasks.find_by_signature(signature, exclude_id=task_id)
        if duplicate is not None:
            logger.info("Pipeline task=%s: worksheet matches task %s (signature=%s)", task_id, duplicate.id, signature)

        changes: dict[str, Any] = {"scan_id": scan.scan_id, "signature": signature}
        if scan.conversation_id:
            changes["conversation_id"] = scan.conversation_id
        if scan.subject:
            changes["subject"] = scan.subject

        task: Task | None
        try:
            task = self._tasks.update(task_id, **changes)
        except TaskNotFoundError:
            # Deleted while the upload was in flight; the transcript still gets the result.
            logger.warning("Pipeline task=%s vanished before scan %s could be recorded", task_id, scan.scan_id)
            task = None
        else:
            self._tasks.persist()
            if self.on_task_updated is not None:
                try:
                    self.on_task_updated(task)
                except Exception:
                    logger.exception("on_task_updated listener failed task=%s", task_id)

        # Drop every earlier analysis, but keep this run's placeholder so it can be substituted in place.
        purged = self._log.filter_out(
            self._mode,
            task_id,
            lambda m: m.id != placeholder.id and is_scan_derived(m),
        )
        if purged:
            logger.info("Pipeline task=%s: removed %s messages from earlier scans", task_id, purged)

        first, *rest = self.build_result_messages(scan, run_id=run_id)
        if not self._log.replace_by_id(self._mode, task_id, placeholder.id, lambda: first):
            rest = [first, *rest]
        self._log.append(self._mode, task_id, rest)

        self._set_state(task_id, run_id, PipelineState.COMPLETED)
        logger.info("Pipeline task=%s run=%s completed scan=%s", task_id, run_id, scan.scan_id)
        return PipelineOutcome(
            state=PipelineState.COMPLETED,
            run_id=run_id,
            task=task,
            scan=scan,
            duplicate_of=duplicate.id if duplicate is not None else None,
        )
