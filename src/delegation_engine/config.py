# src/delegation_engine/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Settings stay injectable: tests pass their own object instead of reading env.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "DELEGATION"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


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
    console_actor_id: str
    sweeper_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Reschedule workflow ----
    reschedule_expiry_days: int
    system_actor_id: str
    sweep_interval_seconds: float
    sweep_batch_limit: int

    # ---- Display ----
    timezone: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "delegation") or "delegation"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        console_actor_id = _env(_k("CONSOLE_ACTOR_ID"), "operator").strip() or "operator"
        sweeper_enabled = _env_bool(_k("SWEEPER_ENABLED"), True)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/delegation"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "delegation.sqlite3")

        # Non-positive values would create requests that expire immediately.
        reschedule_expiry_days = max(1, _env_int(_k("RESCHEDULE_EXPIRY_DAYS"), 7))
        system_actor_id = _env(_k("SYSTEM_ACTOR_ID"), "system").strip() or "system"
        sweep_interval_seconds = _env_float(_k("SWEEP_INTERVAL_SECONDS"), 60.0)
        sweep_batch_limit = _env_int(_k("SWEEP_BATCH_LIMIT"), 100)

        timezone = _env(_k("TIMEZONE"), "UTC").strip() or "UTC"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            console_actor_id=console_actor_id,
            sweeper_enabled=sweeper_enabled,
            data_dir=data_dir,
            db_path=db_path,
            reschedule_expiry_days=reschedule_expiry_days,
            system_actor_id=system_actor_id,
            sweep_interval_seconds=sweep_interval_seconds,
            sweep_batch_limit=sweep_batch_limit,
            timezone=timezone,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
