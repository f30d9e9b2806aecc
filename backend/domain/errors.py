"""Typed failures raised by availability checks and lifecycle transitions."""

from __future__ import annotations

from typing import Optional, Sequence

from backend.domain.models import Verdict


class ReservationError(Exception):
    """Base class for every reservation-domain failure."""

    retryable: bool = False


class ReservationValidationError(ReservationError):
    """Malformed or unacceptable input; the caller can correct it locally."""


class RequestNotFoundError(ReservationError):
    """Raised when a request id does not resolve to a stored request."""


class ForbiddenError(ReservationError):
    """The authorization oracle refused the actor for this action."""


class InvalidStateError(ReservationError):
    """Transition attempted from a state that does not allow it.

    Usually means the caller acted on stale data and should refresh.
    """


class ConflictError(ReservationError):
    """The slot was taken between the caller's read and the commit.

    Safe to retry after refreshing; names the conflicting records so the
    caller can tell which requests need re-resolution.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        verdict: Verdict = Verdict.CONFLICTS_CONFIRMED,
        conflicting_schedule_ids: Sequence[int] = (),
        conflicting_request_ids: Sequence[int] = (),
        request_id: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.verdict = verdict
        self.conflicting_schedule_ids = tuple(conflicting_schedule_ids)
        self.conflicting_request_ids = tuple(conflicting_request_ids)
        self.request_id = request_id


class UpstreamError(ReservationError):
    """A persistence, authorization or audit call failed."""

    retryable = True
