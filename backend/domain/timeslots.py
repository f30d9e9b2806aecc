"""Time arithmetic for the bookable slot grid.

All functions here are pure. Invalid arguments yield an empty result instead
of raising, so UI-facing callers can render "no options" without guarding.
"""

from __future__ import annotations

from typing import Iterable, Optional

from backend.domain.constraints import BookingWindowConfig, validate_booking_window_config
from backend.domain.models import MINUTES_PER_DAY, Interval, TimeOfDay


def overlaps(a: Interval, b: Interval) -> bool:
    """True iff the half-open intervals intersect; touching ends do not."""
    return a.start < b.end and b.start < a.end


def _minute_value(value: TimeOfDay | int) -> int:
    if isinstance(value, TimeOfDay):
        return value.minutes
    return int(value)


def generate_slots(
    open_minute: TimeOfDay | int,
    close_minute: TimeOfDay | int,
    step_minutes: int,
    min_duration: Optional[int] = None,
) -> list[TimeOfDay]:
    """Start times from `open_minute` every `step_minutes`.

    A start is kept only if `start + min_duration <= close_minute`, so every
    slot admits at least one valid booking. `min_duration` defaults to the step.
    """
    open_value = _minute_value(open_minute)
    close_value = _minute_value(close_minute)
    required = step_minutes if min_duration is None else min_duration

    if step_minutes <= 0 or required <= 0:
        return []
    if not 0 <= open_value < MINUTES_PER_DAY or not 0 < close_value < MINUTES_PER_DAY:
        return []
    if close_value <= open_value:
        return []

    slots: list[TimeOfDay] = []
    current = open_value
    while current + required <= close_value:
        slots.append(TimeOfDay(current))
        current += step_minutes
    return slots


def valid_end_times(
    start: TimeOfDay,
    candidates: Iterable[TimeOfDay],
    min_duration: int,
    max_duration: int,
    close_minute: TimeOfDay | int,
) -> list[TimeOfDay]:
    """End times reachable from `start` within the duration bounds.

    The closing time itself is always offered when its duration fits, even if
    it is not on the step grid.
    """
    close_value = _minute_value(close_minute)
    if min_duration <= 0 or max_duration < min_duration:
        return []
    if not 0 < close_value < MINUTES_PER_DAY or close_value <= start.minutes:
        return []

    def _fits(end_value: int) -> bool:
        duration = end_value - start.minutes
        return (
            end_value > start.minutes
            and min_duration <= duration <= max_duration
            and end_value <= close_value
        )

    accepted = {candidate.minutes for candidate in candidates if _fits(candidate.minutes)}
    if _fits(close_value):
        accepted.add(close_value)
    return [TimeOfDay(value) for value in sorted(accepted)]


class SlotCatalog:
    """Facility-bound view of the slot grid."""

    def __init__(self, config: BookingWindowConfig) -> None:
        validate_booking_window_config(config)
        self._config = config
        self._start_times = generate_slots(
            config.open_minute,
            config.close_minute,
            config.step_minutes,
            min_duration=config.min_duration_minutes,
        )
        self._end_candidates = [
            TimeOfDay(value)
            for value in range(
                config.open_minute + config.step_minutes,
                config.close_minute + 1,
                config.step_minutes,
            )
        ]

    @property
    def config(self) -> BookingWindowConfig:
        return self._config

    def start_times(self) -> list[TimeOfDay]:
        return list(self._start_times)

    def end_time_candidates(self) -> list[TimeOfDay]:
        return list(self._end_candidates)

    def end_times_for(self, start: TimeOfDay) -> list[TimeOfDay]:
        if start not in self._start_times:
            return []
        return valid_end_times(
            start,
            self._end_candidates,
            self._config.min_duration_minutes,
            self._config.max_duration_minutes,
            self._config.close_minute,
        )

    def is_bookable(self, interval: Interval) -> bool:
        return interval.end in self.end_times_for(interval.start)
