"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_path: Path
    log_level: str

    facility_open_minute: int
    facility_close_minute: int
    slot_step_minutes: int
    min_booking_minutes: int
    max_booking_minutes: int
    past_booking_buffer_minutes: int
    max_purpose_length: int

    bulk_concurrency: int
    upstream_retry_attempts: int
    upstream_retry_initial_delay_seconds: float
    upstream_retry_backoff_factor: float

    seed_demo_data: bool
    system_actor_id: str
    expired_request_feedback: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive copies via dataclasses.replace."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Classroom Reservation Service"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/reservations.db")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        facility_open_minute=_env_int("FACILITY_OPEN_MINUTE", 7 * 60),
        facility_close_minute=_env_int("FACILITY_CLOSE_MINUTE", 20 * 60),
        slot_step_minutes=_env_int("SLOT_STEP_MINUTES", 30),
        min_booking_minutes=_env_int("MIN_BOOKING_MINUTES", 30),
        max_booking_minutes=_env_int("MAX_BOOKING_MINUTES", 8 * 60),
        past_booking_buffer_minutes=_env_int("PAST_BOOKING_BUFFER_MINUTES", 5),
        max_purpose_length=_env_int("MAX_PURPOSE_LENGTH", 500),
        bulk_concurrency=_env_int("BULK_CONCURRENCY", 4),
        upstream_retry_attempts=_env_int("UPSTREAM_RETRY_ATTEMPTS", 3),
        upstream_retry_initial_delay_seconds=_env_float(
            "UPSTREAM_RETRY_INITIAL_DELAY_SECONDS", 0.3
        ),
        upstream_retry_backoff_factor=_env_float("UPSTREAM_RETRY_BACKOFF_FACTOR", 2.0),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        system_actor_id=os.getenv("SYSTEM_ACTOR_ID", "system"),
        expired_request_feedback=os.getenv(
            "EXPIRED_REQUEST_FEEDBACK",
            "Auto-rejected: booking date/time has passed",
        ),
    )
