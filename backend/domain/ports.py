"""Capabilities the reservation core consumes but does not implement."""

from __future__ import annotations

from datetime import date
from typing import Optional, Protocol

from backend.domain.models import (
    ReservationAction,
    ReservationDraft,
    ReservationRequest,
    ScheduleEntry,
)


class ReservationStore(Protocol):
    """Persistence boundary.

    Each commit is atomic on its own and re-validates its precondition:
    `commit_approval` raises ConflictError when a confirmed entry overlapping
    the request landed first, and InvalidStateError when the request is no
    longer pending. The read-then-commit pair is not atomic.
    """

    async def read_schedules(self, room_id: str, on_date: date) -> list[ScheduleEntry]:
        ...

    async def read_pending_requests(
        self, room_id: str, on_date: date
    ) -> list[ReservationRequest]:
        ...

    async def get_request(self, request_id: int) -> Optional[ReservationRequest]:
        ...

    async def list_pending_requests(self) -> list[ReservationRequest]:
        ...

    async def create_request(self, draft: ReservationDraft) -> ReservationRequest:
        ...

    async def commit_approval(self, request_id: int) -> ScheduleEntry:
        ...

    async def commit_rejection(self, request_id: int, feedback: str) -> ReservationRequest:
        ...

    async def commit_cancellation(self, schedule_id: int, reason: str) -> ReservationRequest:
        ...


class Authorizer(Protocol):
    async def authorize(
        self,
        actor_id: str,
        action: ReservationAction,
        resource_owner_id: str,
    ) -> bool:
        ...


class AuditSink(Protocol):
    async def record_audit(
        self,
        action: ReservationAction,
        actor_id: str,
        resource_id: str,
        outcome: str,
    ) -> None:
        ...
