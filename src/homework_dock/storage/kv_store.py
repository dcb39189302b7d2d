# src/homework_dock/storage/kv_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..core.errors import QuotaExceededError

logger = logging.getLogger(__name__)


def _encode(key: str, value: Any, max_value_bytes: int | None) -> str:
    """JSON-encode and enforce the per-value quota (raises, callers convert to False)."""
    raw = json.dumps(value, ensure_ascii=False)
    if max_value_bytes is not None:
        size = len(raw.encode("utf-8"))
        if size > max_value_bytes:
            raise QuotaExceededError(key, size, max_value_bytes)
    return raw


def _decode(raw: str | None) -> Any | None:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except Exception:
        return None


class SqliteKeyValueStore:
    """
    SQLite-backed key/value store with JSON values.

    save()/load() never raise: write failures (quota, locked DB, disk full)
    are logged and reported as False so callers can apply their own
    fallback policy.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "store.sqlite3", *, max_value_bytes: int | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._max_value_bytes = max_value_bytes
        self._ensure_schema()
        try:
            total = len(self.keys())
        except Exception:
            total = -1
        logger.info("SqliteKeyValueStore ready db=%s keys=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    # ---- public API ----

    def save(self, key: str, value: Any) -> bool:
        try:
            raw = _encode(key, value, self._max_value_bytes)
        except QuotaExceededError as e:
            logger.warning("%s", e)
            return False
        except Exception:
            logger.exception("Failed to JSON-encode value for key=%s", key)
            return False

        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO kv(key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                                   updated_at = excluded.updated_at
                    """,
                    (key, raw, time.time()),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error:
            logger.exception("SQLite write failed key=%s", key)
            return False
        return True

    def load(self, key: str) -> Any | None:
        try:
            conn = self._get_conn()
            try:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error:
            logger.exception("SQLite read failed key=%s", key)
            return None
        return _decode(row["value"]) if row else None

    def remove(self, key: str) -> bool:
        try:
            conn = self._get_conn()
            try:
                cur = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()
        except sqlite3.Error:
            logger.exception("SQLite delete failed key=%s", key)
            return False

    def keys(self, prefix: str = "") -> list[str]:
        try:
            conn = self._get_conn()
            try:
                rows = conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error:
            logger.exception("SQLite key scan failed prefix=%s", prefix)
            return []
        return [str(r["key"]) for r in rows]


class MemoryKeyValueStore:
    """
    In-process key/value store with the same contract as SqliteKeyValueStore.

    Values are kept JSON-encoded so callers never share mutable state with the store.
    """

    def __init__(self, *, max_value_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self._max_value_bytes = max_value_bytes

    def save(self, key: str, value: Any) -> bool:
        try:
            self._data[key] = _encode(key, value, self._max_value_bytes)
        except QuotaExceededError as e:
            logger.warning("%s", e)
            return False
        except Exception:
            logger.exception("Failed to JSON-encode value for key=%s", key)
            return False
        return True

    def load(self, key: str) -> Any | None:
        return _decode(self._data.get(key))

    def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
