"""Centralised engine settings loaded from environment / .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _default_data_dir() -> Path:
    """Return the directory that holds the SQLite file and session summary."""
    return _PROJECT_ROOT / "data"


_DATA_DIR = _default_data_dir()
_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_DATA_DIR / 'rem_engine.db'}"


class Settings(BaseSettings):
    """All runtime tunables of the sleep-phase inference engine.

    Values are read from environment variables first, then from a *.env*
    file located at the project root.  Every variable lives in the flat
    ``REM_ENGINE_`` namespace (e.g. ``REM_ENGINE_SESSION_MERGE_GAP_MINUTES``).
    """

    model_config = SettingsConfigDict(
        env_prefix="REM_ENGINE_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Session windowing ─────────────────────────────────────
    session_merge_gap_minutes: float = 30.0
    rem_merge_gap_minutes: float = 5.0
    freshness_horizon_minutes: float = 45.0
    explicit_grace_minutes: float = 10.0

    # ── Buffer lookbacks ──────────────────────────────────────
    stage_lookback_hours: float = 12.0
    heart_rate_lookback_hours: float = 8.0
    support_recency_minutes: float = 30.0

    # ── Heart-rate band ───────────────────────────────────────
    hr_range_lookback_minutes: float = 120.0
    hr_min_samples: int = Field(10, ge=1)

    # ── Calibration ───────────────────────────────────────────
    calibration_interval_hours: float = 6.0
    calibration_history_days: int = 14
    calibration_fetch_timeout_seconds: float = 15.0

    # ── Scheduler ─────────────────────────────────────────────
    scheduler_enabled: bool = True
    tick_interval_seconds: float = 30.0

    # ── Persistence ───────────────────────────────────────────
    database_url: str = _DEFAULT_DB_URL
    summary_path: Path = _DATA_DIR / "last_session_summary.json"

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
