"""Reservation request state machine.

pending -> approved   (admin; re-checks availability, store binds a schedule)
pending -> rejected   (admin; feedback required)
approved -> cancelled (owner or admin; reason required, bound schedule cancelled)

Every commit goes through the store's own atomic re-validation, so a slot
taken between our availability read and the write surfaces as ConflictError
rather than a double booking.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable, Optional

from backend.domain.constraints import BookingWindowConfig
from backend.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    RequestNotFoundError,
    ReservationError,
    ReservationValidationError,
    UpstreamError,
)
from backend.domain.models import (
    Interval,
    RequestStatus,
    ReservationAction,
    ReservationDraft,
    ReservationRequest,
    ScheduleEntry,
)
from backend.domain.ports import AuditSink, Authorizer, ReservationStore
from backend.domain.timeslots import SlotCatalog
from backend.services.availability_service import AvailabilityService, call_upstream
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def booking_window_from_settings(settings: Settings) -> BookingWindowConfig:
    return BookingWindowConfig(
        open_minute=settings.facility_open_minute,
        close_minute=settings.facility_close_minute,
        step_minutes=settings.slot_step_minutes,
        min_duration_minutes=settings.min_booking_minutes,
        max_duration_minutes=settings.max_booking_minutes,
    )


def _audit_outcome(exc: ReservationError) -> str:
    if isinstance(exc, ConflictError):
        return "conflict"
    if isinstance(exc, ForbiddenError):
        return "forbidden"
    if isinstance(exc, InvalidStateError):
        return "invalid_state"
    if isinstance(exc, RequestNotFoundError):
        return "not_found"
    if isinstance(exc, UpstreamError):
        return "upstream_error"
    return "validation_error"


class ReservationLifecycleService:
    """Single-item transitions; bulk callers fan these out through the runner."""

    def __init__(
        self,
        store: ReservationStore,
        authorizer: Authorizer,
        audit: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._authorizer = authorizer
        self._audit_sink = audit
        self._clock = clock or datetime.now
        self._availability = AvailabilityService(store, settings=self._settings)
        self._catalog = SlotCatalog(booking_window_from_settings(self._settings))

    @property
    def catalog(self) -> SlotCatalog:
        return self._catalog

    @property
    def availability(self) -> AvailabilityService:
        return self._availability

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _load(self, request_id: int) -> ReservationRequest:
        request = await call_upstream(
            lambda: self._store.get_request(request_id),
            "get_request",
            retry_settings=self._settings,
        )
        if request is None:
            raise RequestNotFoundError(f"request {request_id} not found")
        return request

    async def _is_authorized(
        self,
        actor_id: str,
        action: ReservationAction,
        resource_owner_id: str,
    ) -> bool:
        return await call_upstream(
            lambda: self._authorizer.authorize(actor_id, action, resource_owner_id),
            "authorize",
            retry_settings=self._settings,
        )

    async def _require(
        self,
        actor_id: str,
        action: ReservationAction,
        resource_owner_id: str,
    ) -> None:
        if not await self._is_authorized(actor_id, action, resource_owner_id):
            raise ForbiddenError(f"actor '{actor_id}' may not {action.value} this request")

    def _ensure_not_past(self, on_date: date, interval: Interval, verb: str) -> None:
        starts_at = datetime.combine(on_date, datetime.min.time()) + timedelta(
            minutes=interval.start.minutes
        )
        cutoff = self.now() + timedelta(minutes=self._settings.past_booking_buffer_minutes)
        if starts_at <= cutoff:
            raise ReservationValidationError(
                f"cannot {verb}: booking time {on_date.isoformat()} {interval.start} has already passed"
            )

    def _clean_text(self, value: Optional[str], field_name: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ReservationValidationError(f"{field_name} must not be empty")
        if len(cleaned) > self._settings.max_purpose_length:
            raise ReservationValidationError(
                f"{field_name} must be at most {self._settings.max_purpose_length} characters"
            )
        return cleaned

    async def _audit(
        self,
        action: ReservationAction,
        actor_id: str,
        resource_id: str,
        outcome: str,
    ) -> None:
        if self._audit_sink is None:
            return
        try:
            await self._audit_sink.record_audit(action, actor_id, resource_id, outcome)
        except Exception as exc:
            logger.warning(
                "Audit record dropped | action=%s | actor_id=%s | resource_id=%s | outcome=%s | error=%s",
                action.value,
                actor_id,
                resource_id,
                outcome,
                exc,
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def create_request(
        self,
        *,
        actor_id: str,
        room_id: str,
        on_date: date,
        interval: Interval,
        purpose: str,
    ) -> ReservationRequest:
        resource_id = f"room:{room_id}"
        try:
            await self._require(actor_id, ReservationAction.CREATE, actor_id)
            if not room_id or not room_id.strip():
                raise ReservationValidationError("room_id must not be empty")
            cleaned_purpose = self._clean_text(purpose, "purpose")
            if not self._catalog.is_bookable(interval):
                raise ReservationValidationError(
                    f"interval {interval} is outside the bookable slot grid"
                )
            self._ensure_not_past(on_date, interval, "request")

            report = await self._availability.check(room_id, on_date, interval)
            if not report.is_free:
                raise ConflictError(
                    f"room {room_id} is not available on {on_date.isoformat()} {interval}",
                    verdict=report.verdict,
                    conflicting_schedule_ids=report.conflicting_schedule_ids,
                    conflicting_request_ids=report.conflicting_request_ids,
                )

            draft = ReservationDraft(
                room_id=room_id,
                date=on_date,
                interval=interval,
                requester_id=actor_id,
                purpose=cleaned_purpose,
                created_at=self.now(),
            )
            request = await call_upstream(
                lambda: self._store.create_request(draft),
                "create_request",
            )
        except ReservationError as exc:
            await self._audit(ReservationAction.CREATE, actor_id, resource_id, _audit_outcome(exc))
            raise

        logger.info(
            "Request created | request_id=%s | room_id=%s | date=%s | interval=%s | requester_id=%s",
            request.request_id,
            room_id,
            on_date.isoformat(),
            interval,
            actor_id,
        )
        await self._audit(
            ReservationAction.CREATE, actor_id, f"request:{request.request_id}", "success"
        )
        return request

    async def approve(self, actor_id: str, request_id: int) -> ScheduleEntry:
        resource_id = f"request:{request_id}"
        try:
            request = await self._load(request_id)
            await self._require(actor_id, ReservationAction.APPROVE, request.requester_id)
            if request.status is not RequestStatus.PENDING:
                detail = (
                    f" (schedule {request.schedule_id})"
                    if request.schedule_id is not None
                    else ""
                )
                raise InvalidStateError(
                    f"request {request_id} is already {request.status.value}{detail}"
                )
            self._ensure_not_past(request.date, request.interval, "approve")

            # Re-check at approval time: another request may have been
            # approved since this one was submitted.
            report = await self._availability.check(
                request.room_id,
                request.date,
                request.interval,
                exclude_request_id=request_id,
            )
            if report.verdict.blocks_approval:
                raise ConflictError(
                    f"request {request_id} conflicts with a confirmed booking",
                    verdict=report.verdict,
                    conflicting_schedule_ids=report.conflicting_schedule_ids,
                    conflicting_request_ids=report.conflicting_request_ids,
                    request_id=request_id,
                )

            schedule = await call_upstream(
                lambda: self._store.commit_approval(request_id),
                "commit_approval",
            )
        except ReservationError as exc:
            await self._audit(ReservationAction.APPROVE, actor_id, resource_id, _audit_outcome(exc))
            raise

        logger.info(
            "Request approved | request_id=%s | schedule_id=%s | room_id=%s | date=%s | interval=%s",
            request_id,
            schedule.schedule_id,
            schedule.room_id,
            schedule.date.isoformat(),
            schedule.interval,
        )
        await self._audit(ReservationAction.APPROVE, actor_id, resource_id, "success")
        return schedule

    async def reject(self, actor_id: str, request_id: int, feedback: str) -> ReservationRequest:
        resource_id = f"request:{request_id}"
        try:
            request = await self._load(request_id)
            await self._require(actor_id, ReservationAction.REJECT, request.requester_id)
            cleaned_feedback = self._clean_text(feedback, "feedback")
            if request.status is not RequestStatus.PENDING:
                raise InvalidStateError(
                    f"request {request_id} is already {request.status.value}"
                )
            updated = await call_upstream(
                lambda: self._store.commit_rejection(request_id, cleaned_feedback),
                "commit_rejection",
            )
        except ReservationError as exc:
            await self._audit(ReservationAction.REJECT, actor_id, resource_id, _audit_outcome(exc))
            raise

        logger.info("Request rejected | request_id=%s | actor_id=%s", request_id, actor_id)
        await self._audit(ReservationAction.REJECT, actor_id, resource_id, "success")
        return updated

    async def cancel(self, actor_id: str, request_id: int, reason: str) -> ReservationRequest:
        resource_id = f"request:{request_id}"
        try:
            request = await self._load(request_id)
            is_owner = actor_id == request.requester_id
            if not is_owner:
                await self._require(actor_id, ReservationAction.CANCEL, request.requester_id)
            cleaned_reason = self._clean_text(reason, "reason")
            if request.status is not RequestStatus.APPROVED:
                raise InvalidStateError(
                    f"only approved requests can be cancelled; request {request_id} is "
                    f"{request.status.value}"
                )
            schedule_id = request.schedule_id
            if schedule_id is None:
                raise InvalidStateError(
                    f"approved request {request_id} has no bound schedule entry"
                )
            updated = await call_upstream(
                lambda: self._store.commit_cancellation(schedule_id, cleaned_reason),
                "commit_cancellation",
            )
        except ReservationError as exc:
            await self._audit(ReservationAction.CANCEL, actor_id, resource_id, _audit_outcome(exc))
            raise

        logger.info(
            "Request cancelled | request_id=%s | schedule_id=%s | actor_id=%s | owner=%s",
            request_id,
            schedule_id,
            actor_id,
            is_owner,
        )
        await self._audit(ReservationAction.CANCEL, actor_id, resource_id, "success")
        return updated

    async def require_sweep_permission(self, actor_id: str) -> None:
        """Sweeps touch many owners at once, so only the expire permission counts."""
        await self._require(actor_id, ReservationAction.EXPIRE, self._settings.system_actor_id)

    async def list_expired_pending(self, now: Optional[datetime] = None) -> list[ReservationRequest]:
        """Pending requests whose start time has already passed."""
        reference = now or self.now()
        pending = await call_upstream(
            self._store.list_pending_requests,
            "list_pending_requests",
            retry_settings=self._settings,
        )
        return [request for request in pending if request.starts_at <= reference]

    async def expire(self, request_id: int, now: Optional[datetime] = None) -> ReservationRequest:
        """System transition: reject a pending request whose start has passed."""
        actor_id = self._settings.system_actor_id
        resource_id = f"request:{request_id}"
        reference = now or self.now()
        try:
            request = await self._load(request_id)
            if request.status is not RequestStatus.PENDING:
                raise InvalidStateError(
                    f"request {request_id} is already {request.status.value}"
                )
            if request.starts_at > reference:
                raise ReservationValidationError(
                    f"request {request_id} has not started yet and cannot expire"
                )
            updated = await call_upstream(
                lambda: self._store.commit_rejection(
                    request_id, self._settings.expired_request_feedback
                ),
                "commit_rejection",
            )
        except ReservationError as exc:
            await self._audit(ReservationAction.EXPIRE, actor_id, resource_id, _audit_outcome(exc))
            raise

        logger.info("Request expired | request_id=%s", request_id)
        await self._audit(ReservationAction.EXPIRE, actor_id, resource_id, "success")
        return updated

    async def get_request(self, actor_id: str, request_id: int) -> ReservationRequest:
        """Owner or an approver may read a request."""
        request = await self._load(request_id)
        if actor_id != request.requester_id and not await self._is_authorized(
            actor_id, ReservationAction.APPROVE, request.requester_id
        ):
            raise ForbiddenError(f"actor '{actor_id}' may not view request {request_id}")
        return request
