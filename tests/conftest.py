# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from homework_dock.cli.bootstrap import create_initial_state
from homework_dock.core.state import AppState
from homework_dock.storage.kv_store import MemoryKeyValueStore

from .fakes import FakeUploader


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="homework-dock-test",
        log_level="DEBUG",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        kv_db_path=tmp_path / "store.sqlite3",
        kv_max_value_bytes=5 * 1024 * 1024,
        # Upload endpoint (never contacted: tests inject FakeUploader)
        upload_url="http://upload.test/api/ai/upload",
        api_token="test-token",
        upload_timeout_seconds=5.0,
        upload_connect_timeout_seconds=1.0,
        # Compression
        image_max_side=1600,
        image_quality=80,
        # Chat / tasks
        agent_name="Kibundo",
        chat_mode="homework",
        max_persisted_tasks=30,
        user_id="u1",
    )


@pytest.fixture()
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def uploader() -> FakeUploader:
    return FakeUploader()


@pytest.fixture()
def state(settings: SimpleNamespace, kv: MemoryKeyValueStore, uploader: FakeUploader) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: the stores, message log and pipeline are real; only the network
    (uploader) and the storage backend (in-memory) are substituted.
    """
    return create_initial_state(settings=settings, kv=kv, uploader=uploader)
