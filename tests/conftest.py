from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

import pytest

from backend.domain.errors import ConflictError, InvalidStateError, RequestNotFoundError
from backend.domain.models import (
    Interval,
    RequestStatus,
    ReservationAction,
    ReservationDraft,
    ReservationRequest,
    ScheduleEntry,
    ScheduleStatus,
    Verdict,
)
from backend.services.lifecycle_service import ReservationLifecycleService
from backend.utils.config import get_settings


NOW = datetime(2030, 1, 7, 8, 0)
BOOKING_DATE = date(2030, 1, 8)


class InMemoryStore:
    """ReservationStore fake.

    Reads yield to the event loop so concurrent transitions interleave;
    commits never await, which makes each one atomic under asyncio.
    """

    def __init__(self) -> None:
        self.requests: dict[int, ReservationRequest] = {}
        self.schedules: dict[int, ScheduleEntry] = {}
        self.failing_reads = 0
        self.read_calls = 0
        self.commit_calls = 0
        self._next_request_id = 1
        self._next_schedule_id = 1

    def add_request(
        self,
        room_id: str,
        interval: Interval,
        requester_id: str = "faculty-1",
        on_date: date = BOOKING_DATE,
        status: RequestStatus = RequestStatus.PENDING,
        purpose: str = "Lecture",
    ) -> ReservationRequest:
        request = ReservationRequest(
            request_id=self._next_request_id,
            room_id=room_id,
            date=on_date,
            interval=interval,
            status=status,
            requester_id=requester_id,
            purpose=purpose,
            created_at=NOW,
        )
        self.requests[request.request_id] = request
        self._next_request_id += 1
        return request

    def add_schedule(
        self,
        room_id: str,
        interval: Interval,
        owner_id: str = "admin-1",
        on_date: date = BOOKING_DATE,
        status: ScheduleStatus = ScheduleStatus.CONFIRMED,
        request_id: Optional[int] = None,
    ) -> ScheduleEntry:
        entry = ScheduleEntry(
            schedule_id=self._next_schedule_id,
            room_id=room_id,
            date=on_date,
            interval=interval,
            status=status,
            owner_id=owner_id,
            purpose="Timetable",
            request_id=request_id,
        )
        self.schedules[entry.schedule_id] = entry
        self._next_schedule_id += 1
        return entry

    def active_schedules(self) -> list[ScheduleEntry]:
        return [entry for entry in self.schedules.values() if entry.is_active]

    async def _read_gate(self) -> None:
        self.read_calls += 1
        await asyncio.sleep(0)
        if self.failing_reads > 0:
            self.failing_reads -= 1
            raise ConnectionError("store unavailable")

    async def read_schedules(self, room_id: str, on_date: date) -> list[ScheduleEntry]:
        await self._read_gate()
        return [
            entry
            for entry in self.schedules.values()
            if entry.room_id == room_id and entry.date == on_date
        ]

    async def read_pending_requests(self, room_id: str, on_date: date) -> list[ReservationRequest]:
        await self._read_gate()
        return [
            request
            for request in self.requests.values()
            if request.room_id == room_id
            and request.date == on_date
            and request.status is RequestStatus.PENDING
        ]

    async def get_request(self, request_id: int) -> Optional[ReservationRequest]:
        await self._read_gate()
        return self.requests.get(request_id)

    async def list_pending_requests(self) -> list[ReservationRequest]:
        await self._read_gate()
        return [
            request
            for request in self.requests.values()
            if request.status is RequestStatus.PENDING
        ]

    async def create_request(self, draft: ReservationDraft) -> ReservationRequest:
        return self.add_request(
            draft.room_id,
            draft.interval,
            requester_id=draft.requester_id,
            on_date=draft.date,
            purpose=draft.purpose,
        )

    async def commit_approval(self, request_id: int) -> ScheduleEntry:
        self.commit_calls += 1
        request = self.requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(f"request {request_id} not found")
        if request.status is not RequestStatus.PENDING:
            raise InvalidStateError(f"request {request_id} is already {request.status.value}")
        clashing = [
            entry.schedule_id
            for entry in self.active_schedules()
            if entry.room_id == request.room_id
            and entry.date == request.date
            and entry.interval.overlaps(request.interval)
        ]
        if clashing:
            raise ConflictError(
                f"request {request_id} overlaps a confirmed booking",
                verdict=Verdict.CONFLICTS_CONFIRMED,
                conflicting_schedule_ids=clashing,
                request_id=request_id,
            )
        entry = self.add_schedule(
            request.room_id,
            request.interval,
            owner_id=request.requester_id,
            on_date=request.date,
            request_id=request_id,
        )
        self.requests[request_id] = replace(
            request,
            status=RequestStatus.APPROVED,
            resolved_at=NOW,
            schedule_id=entry.schedule_id,
        )
        return entry

    async def commit_rejection(self, request_id: int, feedback: str) -> ReservationRequest:
        self.commit_calls += 1
        request = self.requests.get(request_id)
        if request is None:
            raise RequestNotFoundError(f"request {request_id} not found")
        if request.status is not RequestStatus.PENDING:
            raise InvalidStateError(f"request {request_id} is already {request.status.value}")
        updated = replace(request, status=RequestStatus.REJECTED, resolved_at=NOW, feedback=feedback)
        self.requests[request_id] = updated
        return updated

    async def commit_cancellation(self, schedule_id: int, reason: str) -> ReservationRequest:
        self.commit_calls += 1
        entry = self.schedules.get(schedule_id)
        if entry is None or entry.request_id is None:
            raise RequestNotFoundError(f"schedule {schedule_id} not found")
        if not entry.is_active:
            raise InvalidStateError(f"schedule {schedule_id} is already cancelled")
        self.schedules[schedule_id] = replace(entry, status=ScheduleStatus.CANCELLED)
        request = self.requests[entry.request_id]
        updated = replace(request, status=RequestStatus.CANCELLED, resolved_at=NOW, feedback=reason)
        self.requests[request.request_id] = updated
        return updated


class FakeAuthorizer:
    """Admins may do anything; everyone else only creates or cancels their own requests."""

    def __init__(self, admins: tuple[str, ...] = ("admin-1",)) -> None:
        self.admins = set(admins)
        self.calls: list[tuple[str, ReservationAction, str]] = []
        self.failures = 0

    async def authorize(
        self,
        actor_id: str,
        action: ReservationAction,
        resource_owner_id: str,
    ) -> bool:
        self.calls.append((actor_id, action, resource_owner_id))
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise TimeoutError("authorization oracle timed out")
        if actor_id in self.admins:
            return True
        return (
            action in (ReservationAction.CREATE, ReservationAction.CANCEL)
            and actor_id == resource_owner_id
        )


class RecordingAudit:
    def __init__(self) -> None:
        self.records: list[tuple[ReservationAction, str, str, str]] = []

    async def record_audit(
        self,
        action: ReservationAction,
        actor_id: str,
        resource_id: str,
        outcome: str,
    ) -> None:
        self.records.append((action, actor_id, resource_id, outcome))

    def outcomes(self, action: ReservationAction) -> list[str]:
        return [outcome for recorded, _, _, outcome in self.records if recorded is action]


class FailingAudit:
    def __init__(self) -> None:
        self.attempts = 0

    async def record_audit(self, *args, **kwargs) -> None:
        self.attempts += 1
        raise RuntimeError("audit sink offline")


@pytest.fixture
def settings(tmp_path):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / "reservations.db",
        upstream_retry_initial_delay_seconds=0.0,
        upstream_retry_backoff_factor=1.0,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    return FakeAuthorizer()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def lifecycle(store, authorizer, audit, settings) -> ReservationLifecycleService:
    return ReservationLifecycleService(
        store=store,
        authorizer=authorizer,
        audit=audit,
        settings=settings,
        clock=lambda: NOW,
    )
