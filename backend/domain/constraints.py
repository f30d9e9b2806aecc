"""Domain-level validation rules for the facility booking window."""

from __future__ import annotations

from dataclasses import dataclass

from backend.domain.models import MINUTES_PER_DAY


@dataclass(frozen=True)
class BookingWindowConfig:
    open_minute: int
    close_minute: int
    step_minutes: int
    min_duration_minutes: int
    max_duration_minutes: int


def validate_booking_window_config(config: BookingWindowConfig) -> None:
    if not 0 <= config.open_minute < MINUTES_PER_DAY:
        raise ValueError("open_minute must be within the day")
    if not 0 < config.close_minute < MINUTES_PER_DAY:
        raise ValueError("close_minute must be within the day")
    if config.close_minute <= config.open_minute:
        raise ValueError("close_minute must be after open_minute")
    if config.step_minutes <= 0:
        raise ValueError("step_minutes must be > 0")
    if config.min_duration_minutes <= 0:
        raise ValueError("min_duration_minutes must be > 0")
    if config.max_duration_minutes < config.min_duration_minutes:
        raise ValueError("max_duration_minutes must be >= min_duration_minutes")
    if config.min_duration_minutes > config.close_minute - config.open_minute:
        raise ValueError("min_duration_minutes must fit within operating hours")
