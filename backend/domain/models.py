"""Domain models for classroom reservations and confirmed schedules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional


MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """Minutes since midnight, facility local time."""

    minutes: int

    def __post_init__(self) -> None:
        if isinstance(self.minutes, bool) or not isinstance(self.minutes, int):
            raise TypeError(f"TimeOfDay minutes must be int, got {self.minutes!r}")
        if not 0 <= self.minutes < MINUTES_PER_DAY:
            raise ValueError(
                f"TimeOfDay must be within [0, {MINUTES_PER_DAY}), got {self.minutes}"
            )

    @classmethod
    def of(cls, hour: int, minute: int = 0) -> TimeOfDay:
        return cls(hour * 60 + minute)

    @classmethod
    def parse(cls, value: str) -> TimeOfDay:
        """Parse 'HH:MM' (seconds, if present, must be zero)."""
        parts = value.strip().split(":")
        if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
            raise ValueError(f"time must follow HH:MM format, got {value!r}")
        hour, minute = int(parts[0]), int(parts[1])
        if len(parts) == 3 and int(parts[2]) != 0:
            raise ValueError(f"time must not carry seconds, got {value!r}")
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError(f"time out of range: {value!r}")
        return cls(hour * 60 + minute)

    @property
    def hour(self) -> int:
        return self.minutes // 60

    @property
    def minute(self) -> int:
        return self.minutes % 60

    def to_12_hour(self) -> str:
        period = "PM" if self.hour >= 12 else "AM"
        hour12 = 12 if self.hour % 12 == 0 else self.hour % 12
        return f"{hour12}:{self.minute:02d} {period}"

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class Interval:
    """Half-open time range [start, end) within one day."""

    start: TimeOfDay
    end: TimeOfDay

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(
                f"interval end must be after start, got {self.start}-{self.end}"
            )

    @classmethod
    def parse(cls, start: str, end: str) -> Interval:
        return cls(TimeOfDay.parse(start), TimeOfDay.parse(end))

    @property
    def duration_minutes(self) -> int:
        return self.end.minutes - self.start.minutes

    def overlaps(self, other: Interval) -> bool:
        return self.start < other.end and other.start < self.end

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.REJECTED, RequestStatus.CANCELLED)


class ScheduleStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ReservationAction(str, Enum):
    CREATE = "create"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    EXPIRE = "expire"


class Verdict(str, Enum):
    FREE = "free"
    CONFLICTS_CONFIRMED = "conflicts_confirmed"
    CONFLICTS_PENDING = "conflicts_pending"
    CONFLICTS_BOTH = "conflicts_both"

    @classmethod
    def from_flags(cls, confirmed: bool, pending: bool) -> Verdict:
        if confirmed and pending:
            return cls.CONFLICTS_BOTH
        if confirmed:
            return cls.CONFLICTS_CONFIRMED
        if pending:
            return cls.CONFLICTS_PENDING
        return cls.FREE

    @property
    def blocks_approval(self) -> bool:
        return self in (Verdict.CONFLICTS_CONFIRMED, Verdict.CONFLICTS_BOTH)


@dataclass(frozen=True)
class ScheduleEntry:
    schedule_id: int
    room_id: str
    date: date
    interval: Interval
    status: ScheduleStatus
    owner_id: str
    purpose: str
    request_id: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status is ScheduleStatus.CONFIRMED


@dataclass(frozen=True)
class ReservationDraft:
    """Validated input for a new request, before the store assigns an id."""

    room_id: str
    date: date
    interval: Interval
    requester_id: str
    purpose: str
    created_at: datetime


@dataclass(frozen=True)
class ReservationRequest:
    request_id: int
    room_id: str
    date: date
    interval: Interval
    status: RequestStatus
    requester_id: str
    purpose: str
    created_at: datetime
    resolved_at: Optional[datetime] = None
    feedback: Optional[str] = None
    schedule_id: Optional[int] = None

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(
            self.date,
            time(self.interval.start.hour, self.interval.start.minute),
        )
