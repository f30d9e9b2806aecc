"""HTTP controller layer for slots, availability and the request lifecycle."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from backend.controllers.dependencies import (
    get_actor_id,
    get_bulk_service,
    get_lifecycle_service,
    to_http_exception,
)
from backend.domain.errors import ReservationError
from backend.domain.models import Interval, ReservationRequest, ScheduleEntry, TimeOfDay
from backend.services.bulk_transition_service import BulkOutcome, BulkTransitionService
from backend.services.lifecycle_service import ReservationLifecycleService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["reservations"])

TIME_PATTERN = r"^\d{2}:\d{2}$"


def _parse_time(value: str) -> str:
    TimeOfDay.parse(value)
    return value


class SlotResponse(BaseModel):
    time: str
    label: str

    @classmethod
    def from_domain(cls, value: TimeOfDay) -> "SlotResponse":
        return cls(time=str(value), label=value.to_12_hour())


class IntervalPayload(BaseModel):
    """Shared room/date/interval fields validated before entering service layer."""

    room_id: str = Field(min_length=1, max_length=64)
    date: date
    start_time: str = Field(pattern=TIME_PATTERN)
    end_time: str = Field(pattern=TIME_PATTERN)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        return _parse_time(value)

    @model_validator(mode="after")
    def validate_ordering(self) -> "IntervalPayload":
        if TimeOfDay.parse(self.end_time) <= TimeOfDay.parse(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self

    def interval(self) -> Interval:
        return Interval.parse(self.start_time, self.end_time)


class AvailabilityCheckRequest(IntervalPayload):
    exclude_request_id: Optional[int] = Field(default=None, gt=0)


class AvailabilityResponse(BaseModel):
    verdict: str
    conflicting_schedule_ids: list[int]
    conflicting_request_ids: list[int]


class CreateReservationRequest(IntervalPayload):
    purpose: str = Field(min_length=1)


class ReservationResponse(BaseModel):
    request_id: int
    room_id: str
    date: date
    start_time: str
    end_time: str
    status: str
    requester_id: str
    purpose: str
    created_at: datetime
    resolved_at: Optional[datetime] = None
    feedback: Optional[str] = None
    schedule_id: Optional[int] = None

    @classmethod
    def from_domain(cls, request: ReservationRequest) -> "ReservationResponse":
        return cls(
            request_id=request.request_id,
            room_id=request.room_id,
            date=request.date,
            start_time=str(request.interval.start),
            end_time=str(request.interval.end),
            status=request.status.value,
            requester_id=request.requester_id,
            purpose=request.purpose,
            created_at=request.created_at,
            resolved_at=request.resolved_at,
            feedback=request.feedback,
            schedule_id=request.schedule_id,
        )


class ScheduleEntryResponse(BaseModel):
    schedule_id: int
    room_id: str
    date: date
    start_time: str
    end_time: str
    status: str
    owner_id: str
    purpose: str
    request_id: Optional[int] = None

    @classmethod
    def from_domain(cls, entry: ScheduleEntry) -> "ScheduleEntryResponse":
        return cls(
            schedule_id=entry.schedule_id,
            room_id=entry.room_id,
            date=entry.date,
            start_time=str(entry.interval.start),
            end_time=str(entry.interval.end),
            status=entry.status.value,
            owner_id=entry.owner_id,
            purpose=entry.purpose,
            request_id=entry.request_id,
        )


class FeedbackRequest(BaseModel):
    feedback: str = Field(min_length=1)


class CancelRequest(BaseModel):
    reason: str = Field(min_length=1)


class BulkRequest(BaseModel):
    request_ids: list[int] = Field(min_length=1)

    @field_validator("request_ids")
    @classmethod
    def validate_request_ids(cls, value: list[int]) -> list[int]:
        if any(request_id <= 0 for request_id in value):
            raise ValueError("request_ids must be positive")
        return value


class BulkRejectRequest(BulkRequest):
    feedback: str = Field(min_length=1)


class BulkCancelRequest(BulkRequest):
    reason: str = Field(min_length=1)


class BulkItemResponse(BaseModel):
    request_id: int
    status: str
    error_type: Optional[str] = None
    error: Optional[str] = None


class BulkOutcomeResponse(BaseModel):
    action: str
    items: list[BulkItemResponse]
    summary: dict[str, int]
    conflict_ids: list[int]

    @classmethod
    def from_outcome(cls, outcome: BulkOutcome) -> "BulkOutcomeResponse":
        items = [
            BulkItemResponse(
                request_id=request_id,
                status=result.status.value,
                error_type=type(result.error).__name__ if result.error is not None else None,
                error=str(result.error) if result.error is not None else None,
            )
            for request_id, result in zip(outcome.request_ids, outcome.results)
        ]
        return cls(
            action=outcome.action.value,
            items=items,
            summary=outcome.summary(),
            conflict_ids=outcome.conflict_ids,
        )


def _unexpected(operation: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected %s failure", operation)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {operation}",
    )


@router.get("/slots", response_model=list[SlotResponse])
async def list_slots(
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> list[SlotResponse]:
    return [SlotResponse.from_domain(slot) for slot in service.catalog.start_times()]


@router.get("/slots/end_times", response_model=list[SlotResponse])
async def list_end_times(
    start: str = Query(pattern=TIME_PATTERN),
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> list[SlotResponse]:
    """End times bookable from `start`; empty when `start` is off the grid."""
    try:
        start_time = TimeOfDay.parse(start)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return [SlotResponse.from_domain(end) for end in service.catalog.end_times_for(start_time)]


@router.post("/availability", response_model=AvailabilityResponse)
async def check_availability(
    payload: AvailabilityCheckRequest,
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> AvailabilityResponse:
    try:
        report = await service.availability.check(
            payload.room_id,
            payload.date,
            payload.interval(),
            exclude_request_id=payload.exclude_request_id,
        )
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("check availability", exc) from exc
    return AvailabilityResponse(
        verdict=report.verdict.value,
        conflicting_schedule_ids=list(report.conflicting_schedule_ids),
        conflicting_request_ids=list(report.conflicting_request_ids),
    )


@router.post(
    "/requests",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_request(
    payload: CreateReservationRequest,
    actor_id: str = Depends(get_actor_id),
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> ReservationResponse:
    try:
        request = await service.create_request(
            actor_id=actor_id,
            room_id=payload.room_id,
            on_date=payload.date,
            interval=payload.interval(),
            purpose=payload.purpose,
        )
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("create request", exc) from exc
    return ReservationResponse.from_domain(request)


@router.post("/requests/expire", response_model=BulkOutcomeResponse)
async def expire_requests(
    actor_id: str = Depends(get_actor_id),
    lifecycle: ReservationLifecycleService = Depends(get_lifecycle_service),
    bulk_service: BulkTransitionService = Depends(get_bulk_service),
) -> BulkOutcomeResponse:
    """Auto-reject every pending request whose start time has passed."""
    try:
        await lifecycle.require_sweep_permission(actor_id)
        outcome = await bulk_service.expire_past_pending()
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("expire requests", exc) from exc
    return BulkOutcomeResponse.from_outcome(outcome)


@router.post("/requests/bulk/approve", response_model=BulkOutcomeResponse)
async def bulk_approve(
    payload: BulkRequest,
    actor_id: str = Depends(get_actor_id),
    service: BulkTransitionService = Depends(get_bulk_service),
) -> BulkOutcomeResponse:
    try:
        outcome = await service.bulk_approve(actor_id, payload.request_ids)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("bulk approve", exc) from exc
    return BulkOutcomeResponse.from_outcome(outcome)


@router.post("/requests/bulk/reject", response_model=BulkOutcomeResponse)
async def bulk_reject(
    payload: BulkRejectRequest,
    actor_id: str = Depends(get_actor_id),
    service: BulkTransitionService = Depends(get_bulk_service),
) -> BulkOutcomeResponse:
    try:
        outcome = await service.bulk_reject(actor_id, payload.request_ids, payload.feedback)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("bulk reject", exc) from exc
    return BulkOutcomeResponse.from_outcome(outcome)


@router.post("/requests/bulk/cancel", response_model=BulkOutcomeResponse)
async def bulk_cancel(
    payload: BulkCancelRequest,
    actor_id: str = Depends(get_actor_id),
    service: BulkTransitionService = Depends(get_bulk_service),
) -> BulkOutcomeResponse:
    try:
        outcome = await service.bulk_cancel(actor_id, payload.request_ids, payload.reason)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("bulk cancel", exc) from exc
    return BulkOutcomeResponse.from_outcome(outcome)


@router.get("/requests/{request_id}", response_model=ReservationResponse)
async def get_request(
    request_id: int,
    actor_id: str = Depends(get_actor_id),
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> ReservationResponse:
    try:
        request = await service.get_request(actor_id, request_id)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("load request", exc) from exc
    return ReservationResponse.from_domain(request)


@router.post("/requests/{request_id}/approve", response_model=ScheduleEntryResponse)
async def approve_request(
    request_id: int,
    actor_id: str = Depends(get_actor_id),
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> ScheduleEntryResponse:
    try:
        entry = await service.approve(actor_id, request_id)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("approve request", exc) from exc
    return ScheduleEntryResponse.from_domain(entry)


@router.post("/requests/{request_id}/reject", response_model=ReservationResponse)
async def reject_request(
    request_id: int,
    payload: FeedbackRequest,
    actor_id: str = Depends(get_actor_id),
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> ReservationResponse:
    try:
        request = await service.reject(actor_id, request_id, payload.feedback)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("reject request", exc) from exc
    return ReservationResponse.from_domain(request)


@router.post("/requests/{request_id}/cancel", response_model=ReservationResponse)
async def cancel_request(
    request_id: int,
    payload: CancelRequest,
    actor_id: str = Depends(get_actor_id),
    service: ReservationLifecycleService = Depends(get_lifecycle_service),
) -> ReservationResponse:
    try:
        request = await service.cancel(actor_id, request_id, payload.reason)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("cancel request", exc) from exc
    return ReservationResponse.from_domain(request)
