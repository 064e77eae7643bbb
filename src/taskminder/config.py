# src/taskminder/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (Matrix credentials only matter when Matrix is enabled).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKMINDER"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


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


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


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

    # ---- Connector flags ----
    console_enabled: bool
    matrix_enabled: bool

    # ---- Matrix ----
    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str
    matrix_reminder_room: str
    matrix_rooms: list[str]

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    matrix_store_path: Path
    tasks_db_path: Path
    workflows_db_path: Path

    # ---- Scanner ----
    scan_cron: str
    suppress_duplicate_escalations: bool

    # ---- Workflow engine ----
    engine_poll_seconds: float
    step_max_attempts: int
    step_initial_delay_seconds: float
    step_backoff_factor: float
    step_max_delay_seconds: float

    # ---- Escalation timing ----
    batch_retry_delay_seconds: float
    followup_wait_seconds: float
    escalation_wait_seconds: float

    @staticmethod
    def from_env() -> Settings:
        app_name = _env(_k("APP_NAME"), "taskminder") or "taskminder"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        matrix_enabled = _env_bool(_k("MATRIX_ENABLED"), False)

        matrix_homeserver = _env(_k("MATRIX_HOMESERVER")).strip()
        matrix_user_id = _env(_k("MATRIX_USER_ID")).strip()
        matrix_password = _env(_k("MATRIX_PASSWORD")).strip()
        matrix_reminder_room = _env(_k("MATRIX_REMINDER_ROOM")).strip()
        matrix_rooms = _env_list(_k("MATRIX_ROOMS"), [])

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskminder"))
        matrix_store_path = _env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store")
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")
        workflows_db_path = _env_path(_k("WORKFLOWS_DB_PATH"), data_dir / "workflows.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            matrix_enabled=matrix_enabled,
            matrix_homeserver=matrix_homeserver,
            matrix_user_id=matrix_user_id,
            matrix_password=matrix_password,
            matrix_reminder_room=matrix_reminder_room,
            matrix_rooms=matrix_rooms,
            data_dir=data_dir,
            matrix_store_path=matrix_store_path,
            tasks_db_path=tasks_db_path,
            workflows_db_path=workflows_db_path,
            scan_cron=_env(_k("SCAN_CRON"), "*/30 * * * *"),
            suppress_duplicate_escalations=_env_bool(_k("SUPPRESS_DUPLICATE_ESCALATIONS"), True),
            engine_poll_seconds=_env_float(_k("ENGINE_POLL_SECONDS"), 5.0),
            step_max_attempts=_env_int(_k("STEP_MAX_ATTEMPTS"), 5),
            step_initial_delay_seconds=_env_float(_k("STEP_INITIAL_DELAY_SECONDS"), 10.0),
            step_backoff_factor=_env_float(_k("STEP_BACKOFF_FACTOR"), 2.0),
            step_max_delay_seconds=_env_float(_k("STEP_MAX_DELAY_SECONDS"), 300.0),
            batch_retry_delay_seconds=_env_float(_k("BATCH_RETRY_DELAY_SECONDS"), 300.0),
            followup_wait_seconds=_env_float(_k("FOLLOWUP_WAIT_SECONDS"), 24 * 60 * 60),
            escalation_wait_seconds=_env_float(_k("ESCALATION_WAIT_SECONDS"), 48 * 60 * 60),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
