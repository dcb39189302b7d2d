# src/homework_dock/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..chat.message_log import MessageLog
from ..pipeline.pipeline import ScanPipeline
from ..tasks.progress import ProgressTracker
from ..tasks.task_store import TaskStore
from .ports import KeyValueStore
from .session import SessionController


@dataclass
class AppState:
    # Settings object (real Settings or a test double with the same attributes).
    settings: Any

    kv: KeyValueStore
    task_store: TaskStore
    message_log: MessageLog
    progress: ProgressTracker
    pipeline: ScanPipeline
    session: SessionController
