# src/homework_dock/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (storage, uploader, pipeline, session).
"""

from __future__ import annotations

import logging

from ..chat.message_log import MessageLog
from ..config import get_settings
from ..core.ports import KeyValueStore, Uploader
from ..core.session import SessionController
from ..core.state import AppState
from ..pipeline.compress import JpegCompressor
from ..pipeline.pipeline import ScanPipeline
from ..pipeline.upload_client import HttpUploader
from ..storage.kv_store import SqliteKeyValueStore
from ..tasks.progress import ProgressTracker
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.kv_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings=None,
    kv: KeyValueStore | None = None,
    uploader: Uploader | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the storage/uploader ports) injectable makes the app
    easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    if kv is None:
        _ensure_local_dirs(settings)
        kv = SqliteKeyValueStore(settings.kv_db_path, max_value_bytes=settings.kv_max_value_bytes)

    if uploader is None:
        uploader = HttpUploader(
            settings.upload_url,
            api_token=settings.api_token,
            timeout_seconds=settings.upload_timeout_seconds,
            connect_timeout_seconds=settings.upload_connect_timeout_seconds,
        )

    task_store = TaskStore(kv, settings.user_id, max_persisted=settings.max_persisted_tasks)
    message_log = MessageLog(kv)
    progress = ProgressTracker(kv, settings.user_id)
    pipeline = ScanPipeline(
        task_store,
        message_log,
        uploader,
        JpegCompressor(max_side=settings.image_max_side, quality=settings.image_quality),
        mode=settings.chat_mode,
        agent_name=settings.agent_name,
    )
    session = SessionController(
        task_store,
        message_log,
        pipeline,
        progress,
        mode=settings.chat_mode,
        agent_name=settings.agent_name,
    )

    logger.info("State ready user=%s tasks=%s", settings.user_id, len(task_store.list()))
    return AppState(
        settings=settings,
        kv=kv,
        task_store=task_store,
        message_log=message_log,
        progress=progress,
        pipeline=pipeline,
        session=session,
    )
