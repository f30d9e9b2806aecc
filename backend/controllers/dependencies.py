"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from backend.domain.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    RequestNotFoundError,
    ReservationError,
    ReservationValidationError,
    UpstreamError,
)
from backend.services.bulk_transition_service import BulkTransitionService
from backend.services.lifecycle_service import ReservationLifecycleService


def get_lifecycle_service(request: Request) -> ReservationLifecycleService:
    service = getattr(request.app.state, "lifecycle_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Lifecycle service is not initialized",
        )
    return service


def get_bulk_service(request: Request) -> BulkTransitionService:
    service = getattr(request.app.state, "bulk_service", None)
    if service is None:
        lifecycle = getattr(request.app.state, "lifecycle_service", None)
        if lifecycle is not None:
            service = BulkTransitionService(lifecycle)
            request.app.state.bulk_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bulk service is not initialized",
        )
    return service


async def get_actor_id(x_actor_id: str | None = Header(default=None)) -> str:
    """Authentication happens upstream; we only need the resolved user id."""
    if x_actor_id is None or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required",
        )
    return x_actor_id.strip()


_STATUS_BY_ERROR: tuple[tuple[type[ReservationError], int], ...] = (
    (ReservationValidationError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (RequestNotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (UpstreamError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_code_for(exc: ReservationError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def error_detail(exc: ReservationError) -> dict[str, object]:
    detail: dict[str, object] = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, ConflictError):
        detail["verdict"] = exc.verdict.value
        detail["conflicting_schedule_ids"] = list(exc.conflicting_schedule_ids)
        detail["conflicting_request_ids"] = list(exc.conflicting_request_ids)
    return detail


def to_http_exception(exc: ReservationError) -> HTTPException:
    return HTTPException(status_code=status_code_for(exc), detail=error_detail(exc))
