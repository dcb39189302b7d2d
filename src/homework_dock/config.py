# src/homework_dock/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "HOMEWORK"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Real environment variables win over .env entries.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data ----
    data_dir: Path
    kv_db_path: Path
    kv_max_value_bytes: int

    # ---- Remote upload/analyze endpoint ----
    upload_url: str
    api_token: str | None
    upload_timeout_seconds: float
    upload_connect_timeout_seconds: float

    # ---- Image compression ----
    image_max_side: int
    image_quality: int

    # ---- Chat / tasks ----
    agent_name: str
    chat_mode: str
    max_persisted_tasks: int
    user_id: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "homework-dock")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/homework_dock"))
        kv_db_path = _env_path(_k("KV_DB_PATH"), data_dir / "store.sqlite3")
        # Per-value ceiling, in bytes of encoded JSON.
        kv_max_value_bytes = _env_int(_k("KV_MAX_VALUE_BYTES"), 5 * 1024 * 1024)

        upload_url = _env(_k("UPLOAD_URL"), "http://localhost:3001/api/ai/upload").strip()
        api_token = _first_env(_k("API_TOKEN"), default=None)

        upload_timeout_seconds = _env_float(_k("UPLOAD_TIMEOUT_SECONDS"), 90.0)
        upload_connect_timeout_seconds = _env_float(_k("UPLOAD_CONNECT_TIMEOUT_SECONDS"), 10.0)

        image_max_side = _env_int(_k("IMAGE_MAX_SIDE"), 1600)
        image_quality = max(1, min(95, _env_int(_k("IMAGE_QUALITY"), 80)))

        agent_name = _env(_k("AGENT_NAME"), "Kibundo").strip() or "Kibundo"
        chat_mode = _env(_k("CHAT_MODE"), "homework").strip() or "homework"
        max_persisted_tasks = max(1, _env_int(_k("MAX_PERSISTED_TASKS"), 30))
        user_id = _env(_k("USER_ID"), "anon").strip() or "anon"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            kv_db_path=kv_db_path,
            kv_max_value_bytes=kv_max_value_bytes,
            upload_url=upload_url,
            api_token=api_token,
            upload_timeout_seconds=upload_timeout_seconds,
            upload_connect_timeout_seconds=upload_connect_timeout_seconds,
            image_max_side=image_max_side,
            image_quality=image_quality,
            agent_name=agent_name,
            chat_mode=chat_mode,
            max_persisted_tasks=max_persisted_tasks,
            user_id=user_id,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
