"""Applies one lifecycle transition to many requests through the bulk runner."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional

from backend.domain.errors import ConflictError, ReservationValidationError
from backend.domain.models import ReservationAction
from backend.services.bulk_runner import (
    BulkItemStatus,
    BulkOperationRunner,
    BulkResult,
    ProgressCallback,
)
from backend.services.lifecycle_service import ReservationLifecycleService
from backend.utils.config import Settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass
class BulkOutcome:
    """Index-aligned view of one bulk run, keyed back to request ids."""

    action: ReservationAction
    request_ids: list[int]
    runner: BulkOperationRunner[Any]

    @property
    def results(self) -> list[BulkResult[Any]]:
        return self.runner.results

    def _ids_with(self, status: BulkItemStatus) -> list[int]:
        return [
            request_id
            for request_id, result in zip(self.request_ids, self.results)
            if result.status is status
        ]

    @property
    def fulfilled_ids(self) -> list[int]:
        return self._ids_with(BulkItemStatus.FULFILLED)

    @property
    def rejected_ids(self) -> list[int]:
        return self._ids_with(BulkItemStatus.REJECTED)

    @property
    def cancelled_ids(self) -> list[int]:
        return self._ids_with(BulkItemStatus.CANCELLED)

    @property
    def conflict_ids(self) -> list[int]:
        """Requests that lost a race and need re-resolution by the caller."""
        return [
            request_id
            for request_id, result in zip(self.request_ids, self.results)
            if result.status is BulkItemStatus.REJECTED
            and isinstance(result.error, ConflictError)
        ]

    def errors_by_id(self) -> dict[int, BaseException]:
        return {
            request_id: result.error
            for request_id, result in zip(self.request_ids, self.results)
            if result.error is not None
        }

    def summary(self) -> dict[str, int]:
        return self.runner.summary()


def _unique(request_ids: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for request_id in request_ids:
        if request_id not in seen:
            seen.add(request_id)
            ordered.append(request_id)
    return ordered


class BulkTransitionService:
    """Bulk approve / reject / cancel / expire.

    Each call gets its own runner; pass `runner` to keep a handle for
    cancellation while the batch is in flight.
    """

    def __init__(
        self,
        lifecycle: ReservationLifecycleService,
        settings: Optional[Settings] = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._settings = settings or lifecycle.settings

    def new_runner(
        self,
        on_progress: Optional[ProgressCallback] = None,
        concurrency: Optional[int] = None,
    ) -> BulkOperationRunner[Any]:
        return BulkOperationRunner(
            concurrency=(
                concurrency if concurrency is not None else self._settings.bulk_concurrency
            ),
            on_progress=on_progress,
        )

    async def _run(
        self,
        action: ReservationAction,
        actor_id: str,
        request_ids: Iterable[int],
        operation: Callable[[int], Awaitable[Any]],
        runner: Optional[BulkOperationRunner[Any]],
        on_progress: Optional[ProgressCallback],
    ) -> BulkOutcome:
        ordered_ids = _unique(request_ids)
        active_runner = runner or self.new_runner(on_progress=on_progress)
        logger.info(
            "Bulk transition started | action=%s | actor_id=%s | requests=%s",
            action.value,
            actor_id,
            len(ordered_ids),
        )
        await active_runner.start(
            BulkOperationRunner.map(operation, ordered_ids),
            on_progress=on_progress,
        )
        outcome = BulkOutcome(action=action, request_ids=ordered_ids, runner=active_runner)
        if outcome.conflict_ids:
            logger.warning(
                "Bulk transition conflicts | action=%s | request_ids=%s",
                action.value,
                outcome.conflict_ids,
            )
        return outcome

    async def bulk_approve(
        self,
        actor_id: str,
        request_ids: Iterable[int],
        *,
        runner: Optional[BulkOperationRunner[Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BulkOutcome:
        return await self._run(
            ReservationAction.APPROVE,
            actor_id,
            request_ids,
            lambda request_id: self._lifecycle.approve(actor_id, request_id),
            runner,
            on_progress,
        )

    async def bulk_reject(
        self,
        actor_id: str,
        request_ids: Iterable[int],
        feedback: str,
        *,
        runner: Optional[BulkOperationRunner[Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BulkOutcome:
        if not (feedback or "").strip():
            raise ReservationValidationError("feedback must not be empty")
        return await self._run(
            ReservationAction.REJECT,
            actor_id,
            request_ids,
            lambda request_id: self._lifecycle.reject(actor_id, request_id, feedback),
            runner,
            on_progress,
        )

    async def bulk_cancel(
        self,
        actor_id: str,
        request_ids: Iterable[int],
        reason: str,
        *,
        runner: Optional[BulkOperationRunner[Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BulkOutcome:
        if not (reason or "").strip():
            raise ReservationValidationError("reason must not be empty")
        return await self._run(
            ReservationAction.CANCEL,
            actor_id,
            request_ids,
            lambda request_id: self._lifecycle.cancel(actor_id, request_id, reason),
            runner,
            on_progress,
        )

    async def retry_failed(
        self,
        outcome: BulkOutcome,
        request_ids: Optional[Iterable[int]] = None,
    ) -> BulkOutcome:
        """Re-run the rejected subset (optionally narrowed to `request_ids`)."""
        indices: Optional[list[int]] = None
        if request_ids is not None:
            wanted = set(request_ids)
            indices = [
                index
                for index, request_id in enumerate(outcome.request_ids)
                if request_id in wanted
            ]
        await outcome.runner.retry(indices)
        return outcome

    async def expire_past_pending(
        self,
        now: Optional[datetime] = None,
        *,
        runner: Optional[BulkOperationRunner[Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BulkOutcome:
        reference = now or self._lifecycle.now()
        expired = await self._lifecycle.list_expired_pending(reference)
        return await self._run(
            ReservationAction.EXPIRE,
            self._settings.system_actor_id,
            [request.request_id for request in expired],
            lambda request_id: self._lifecycle.expire(request_id, reference),
            runner,
            on_progress,
        )
