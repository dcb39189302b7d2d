# src/homework_dock/core/session.py

"""
Session controller: binds a task to the active chat surface.

Flow of create_task_and_open_chat():
- create/update the Task (idempotent by id) and persist it,
- record progress (step DOING) for resume-after-reload,
- open and focus the task's chat scope, append the seed message,
- with an artifact: run the scan pipeline; its task updates come back
  through open_and_focus() so readers of active_task see the new scan id.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..chat.message_log import MessageLog
from ..chat.messages import ChatMessage, MessageFrom, MessageType, ScopeKey, make_message
from ..pipeline.artifacts import Artifact
from ..pipeline.pipeline import PipelineOutcome, ScanPipeline
from ..tasks.progress import ProgressStep, ProgressTracker
from ..tasks.task_models import Task, TaskMeta, TaskSource
from ..tasks.task_store import TaskStore
from .errors import TaskNotFoundError

logger = logging.getLogger(__name__)

TEXT_LISTENING = "Ich höre zu. Erzähle mir, was du zu tun hast."


@dataclass(frozen=True, slots=True)
class SessionResult:
    task: Task
    seed: ChatMessage
    outcome: PipelineOutcome | None = None


def _defaults_for(artifact: Artifact | None) -> tuple[TaskSource, str]:
    if artifact is None:
        return TaskSource.AUDIO, "Audio-Aufgabe"
    if artifact.is_image:
        return TaskSource.IMAGE, "Bild"
    return TaskSource.FILE, "Datei"


class SessionController:
    def __init__(
        self,
        task_store: TaskStore,
        message_log: MessageLog,
        pipeline: ScanPipeline,
        progress: ProgressTracker,
        *,
        mode: str = "homework",
        agent_name: str | None = None,
    ) -> None:
        self._tasks = task_store
        self._log = message_log
        self._pipeline = pipeline
        self._progress = progress
        self._mode = mode
        self._agent_name = agent_name

        self._active_task_id: str | None = None
        self._active_task: Task | None = None

        pipeline.on_task_updated = self._on_task_updated
        task_store.on_pruned = self._on_tasks_pruned

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def active_task(self) -> Task | None:
        return self._active_task

    @property
    def active_scope(self) -> ScopeKey | None:
        if self._active_task_id is None:
            return None
        return ScopeKey(self._mode, self._active_task_id)

    def messages(self, task_id: str | None = None) -> list[ChatMessage]:
        task_id = task_id or self._active_task_id
        if task_id is None:
            return []
        return self._log.get(self._mode, task_id)

    def open_and_focus(
        self,
        task_id: str,
        task: Task | None = None,
        initial_messages: Iterable[ChatMessage] | None = None,
    ) -> None:
        """
        Make task_id the active chat.

        Re-opening the active task only refreshes the bound Task reference; the
        transcript is never reset. initial_messages seed an empty scope only.
        """
        if task is None:
            task = self._tasks.get(task_id)

        if self._active_task_id == task_id:
            if task is not None:
                self._active_task = task
            return

        self._active_task_id = task_id
        self._active_task = task

        if initial_messages is not None and not self._log.get(self._mode, task_id):
            self._log.append(self._mode, task_id, initial_messages)
        logger.debug("Chat focused mode=%s task=%s", self._mode, task_id)

    def _on_task_updated(self, task: Task) -> None:
        if task.id == self._active_task_id:
            self.open_and_focus(task.id, task)
        self._progress.write(ProgressStep.DOING, task)

    def _on_tasks_pruned(self, task_ids: list[str]) -> None:
        """Drop chat scopes and resume state that still point at tasks trimmed out of storage."""
        pruned = set(task_ids)
        for task_id in task_ids:
            self._log.clear(self._mode, task_id)
        if self._active_task_id in pruned:
            self._active_task_id = None
            self._active_task = None
        record = self._progress.read()
        if record is not None and record.task_id in pruned:
            self._progress.clear()
        logger.info("Cleared chats of %s pruned tasks", len(task_ids))

    def _seed_message(self, artifact: Artifact | None) -> ChatMessage:
        if artifact is None:
            return make_message(TEXT_LISTENING, MessageFrom.AGENT, MessageType.TEXT, agent_name=self._agent_name)
        return make_message(
            {
                "fileName": artifact.name,
                "fileType": artifact.content_type,
                "fileSize": artifact.size,
            },
            MessageFrom.STUDENT,
            MessageType.IMAGE if artifact.is_image else MessageType.TEXT,
        )

    async def create_task_and_open_chat(
        self,
        meta: TaskMeta | None = None,
        artifact: Artifact | None = None,
    ) -> SessionResult:
        meta = meta or TaskMeta()
        existing = self._tasks.get(meta.task_id) if meta.task_id else None

        if existing is None:
            source, what = _defaults_for(artifact)
            if meta.source is None:
                meta.source = source
            if meta.what is None:
                meta.what = what
        if artifact is not None:
            meta.file_name = meta.file_name or artifact.name
            meta.file_type = meta.file_type or artifact.content_type
            meta.has_image = bool(meta.has_image or artifact.is_image)
        if meta.user_id is None:
            meta.user_id = self._tasks.user_id

        task = self._tasks.create(meta)
        self._tasks.persist()
        self._progress.write(ProgressStep.DOING, task)

        self.open_and_focus(task.id, task)
        seed = self._seed_message(artifact)
        self._log.append(self._mode, task.id, [seed])

        if artifact is None:
            logger.info("Task %s opened without artifact (source=%s)", task.id, task.source.value)
            return SessionResult(task=task, seed=seed)

        outcome = await self._pipeline.run(task.id, artifact)
        latest = self._tasks.get(task.id) or task
        logger.info("Task %s scan finished state=%s", task.id, outcome.state.value)
        return SessionResult(task=latest, seed=seed, outcome=outcome)

    def mark_done(self, task_id: str | None = None) -> Task:
        task_id = task_id or self._active_task_id
        if task_id is None:
            raise TaskNotFoundError("<no active task>")
        task = self._tasks.mark_done(task_id)
        self._tasks.persist()
        self._progress.write(ProgressStep.FEEDBACK, task)
        if task_id == self._active_task_id:
            self._active_task = task
        return task

    def resume(self) -> Task | None:
        """Re-open the task recorded in the progress record, if any."""
        record = self._progress.read()
        if record is None or record.step == ProgressStep.NONE or not record.task_id:
            return None
        task = self._tasks.get(record.task_id) or record.task
        if task is None:
            return None
        self.open_and_focus(task.id, task)
        return task

    def delete_task(self, task_id: str) -> bool:
        removed = self._tasks.delete(task_id)
        if not removed:
            return False
        self._tasks.persist()
        self._log.clear(self._mode, task_id)
        if task_id == self._active_task_id:
            self._active_task_id = None
            self._active_task = None
        record = self._progress.read()
        if record is not None and record.task_id == task_id:
            self._progress.clear()
        return True
