"""Conflict detection against confirmed schedules and pending requests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from backend.domain.errors import ReservationError, UpstreamError
from backend.domain.models import Interval, RequestStatus, ReservationRequest, ScheduleEntry, Verdict
from backend.domain.ports import ReservationStore
from backend.domain.timeslots import overlaps
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger
from backend.utils.retry import retry_async


logger = get_logger(__name__)

T = TypeVar("T")


async def call_upstream(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    *,
    retry_settings: Optional[Settings] = None,
) -> T:
    """Run a port call, mapping unexpected failures to UpstreamError.

    Domain errors pass through untouched. With `retry_settings` the call is
    retried on UpstreamError, which is only safe for idempotent reads.
    """

    async def _guarded() -> T:
        try:
            return await operation()
        except ReservationError:
            raise
        except Exception as exc:
            raise UpstreamError(f"{operation_name} failed: {exc}") from exc

    if retry_settings is None:
        return await _guarded()
    return await retry_async(
        _guarded,
        attempts=retry_settings.upstream_retry_attempts,
        initial_delay_seconds=retry_settings.upstream_retry_initial_delay_seconds,
        factor=retry_settings.upstream_retry_backoff_factor,
        should_retry=lambda exc: isinstance(exc, UpstreamError),
        operation_name=operation_name,
    )


@dataclass(frozen=True)
class AvailabilityReport:
    verdict: Verdict
    conflicting_schedule_ids: tuple[int, ...]
    conflicting_request_ids: tuple[int, ...]

    @property
    def is_free(self) -> bool:
        return self.verdict is Verdict.FREE


def scan_conflicts(
    room_id: str,
    on_date: date,
    interval: Interval,
    confirmed_entries: Iterable[ScheduleEntry],
    pending_requests: Iterable[ReservationRequest],
    exclude_request_id: Optional[int] = None,
) -> AvailabilityReport:
    """Linear scan of one room/day; ids are sorted so input order never matters."""
    schedule_ids = sorted(
        entry.schedule_id
        for entry in confirmed_entries
        if entry.is_active
        and entry.room_id == room_id
        and entry.date == on_date
        and (exclude_request_id is None or entry.request_id != exclude_request_id)
        and overlaps(interval, entry.interval)
    )
    request_ids = sorted(
        request.request_id
        for request in pending_requests
        if request.status is RequestStatus.PENDING
        and request.room_id == room_id
        and request.date == on_date
        and (exclude_request_id is None or request.request_id != exclude_request_id)
        and overlaps(interval, request.interval)
    )
    return AvailabilityReport(
        verdict=Verdict.from_flags(bool(schedule_ids), bool(request_ids)),
        conflicting_schedule_ids=tuple(schedule_ids),
        conflicting_request_ids=tuple(request_ids),
    )


def check_availability(
    room_id: str,
    on_date: date,
    interval: Interval,
    confirmed_entries: Iterable[ScheduleEntry],
    pending_requests: Iterable[ReservationRequest],
    exclude_request_id: Optional[int] = None,
) -> Verdict:
    return scan_conflicts(
        room_id,
        on_date,
        interval,
        confirmed_entries,
        pending_requests,
        exclude_request_id=exclude_request_id,
    ).verdict


class AvailabilityService:
    """Reads a room's day from the store and resolves the verdict.

    Reads are idempotent, so upstream failures are retried with backoff
    before surfacing as UpstreamError.
    """

    def __init__(
        self,
        store: ReservationStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()

    async def check(
        self,
        room_id: str,
        on_date: date,
        interval: Interval,
        exclude_request_id: Optional[int] = None,
    ) -> AvailabilityReport:
        schedules = await call_upstream(
            lambda: self._store.read_schedules(room_id, on_date),
            "read_schedules",
            retry_settings=self._settings,
        )
        pending = await call_upstream(
            lambda: self._store.read_pending_requests(room_id, on_date),
            "read_pending_requests",
            retry_settings=self._settings,
        )
        report = scan_conflicts(
            room_id,
            on_date,
            interval,
            schedules,
            pending,
            exclude_request_id=exclude_request_id,
        )
        if not report.is_free:
            logger.info(
                "Availability conflict | room_id=%s | date=%s | interval=%s | verdict=%s | "
                "schedules=%s | requests=%s",
                room_id,
                on_date.isoformat(),
                interval,
                report.verdict.value,
                list(report.conflicting_schedule_ids),
                list(report.conflicting_request_ids),
            )
        return report
