"""Bounded-concurrency executor for batch transitions.

A fixed pool of asyncio workers draws indices from a shared cursor, so at
most `concurrency` operations are in flight. Every item ends in exactly one
of fulfilled / rejected / cancelled and results stay aligned with the input.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    Optional,
    Sequence,
    TypeVar,
)
from uuid import uuid4

from backend.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")
ItemT = TypeVar("ItemT")


class BulkItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BulkTask(Generic[T]):
    key: Hashable
    operation: Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class BulkResult(Generic[T]):
    status: BulkItemStatus
    value: Optional[T] = None
    error: Optional[BaseException] = None


ProgressCallback = Callable[[int, BulkResult[Any]], None]

_PENDING = BulkResult(status=BulkItemStatus.PENDING)
_PROCESSING = BulkResult(status=BulkItemStatus.PROCESSING)
_CANCELLED = BulkResult(status=BulkItemStatus.CANCELLED)


class BulkOperationRunner(Generic[T]):
    """Runs one batch of tasks; owns that batch's results until discarded."""

    def __init__(
        self,
        concurrency: int = 4,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._on_progress = on_progress
        self._tasks: list[BulkTask[T]] = []
        self._results: list[BulkResult[T]] = []
        self._cancelled = False
        self._running = False
        self._started = False
        self._processed = 0
        self._run_id: str | None = None

    @staticmethod
    def map(
        operation: Callable[[ItemT], Awaitable[T]],
        items: Iterable[ItemT],
    ) -> list[BulkTask[T]]:
        """Build one task per item applying a one-argument coroutine function."""

        def _bind(item: ItemT) -> Callable[[], Awaitable[T]]:
            return lambda: operation(item)

        return [BulkTask(key=item, operation=_bind(item)) for item in items]

    @property
    def results(self) -> list[BulkResult[T]]:
        return list(self._results)

    @property
    def tasks(self) -> list[BulkTask[T]]:
        return list(self._tasks)

    @property
    def total(self) -> int:
        return len(self._tasks)

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def failed_indices(self) -> list[int]:
        return [
            index
            for index, result in enumerate(self._results)
            if result.status is BulkItemStatus.REJECTED
        ]

    def cancel(self) -> None:
        """Stop dispatching; in-flight tasks finish, queued ones become cancelled.

        A cancel issued before the first `start` carries into that run, so
        every item it is given comes back cancelled.
        """
        if self._running and not self._cancelled:
            logger.info("Bulk run cancellation requested | run_id=%s", self._run_id)
        self._cancelled = True

    async def start(
        self,
        tasks: Sequence[BulkTask[T]],
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[BulkResult[T]]:
        if self._running:
            raise RuntimeError("bulk run already in progress")
        if concurrency is not None:
            if concurrency < 1:
                raise ValueError("concurrency must be >= 1")
            self._concurrency = concurrency
        if on_progress is not None:
            self._on_progress = on_progress

        self._tasks = list(tasks)
        self._results = [_PENDING] * len(self._tasks)
        if self._started:
            self._cancelled = False
        self._started = True
        self._processed = 0
        if not self._tasks:
            return []
        return await self._run(list(range(len(self._tasks))), label="start")

    async def retry(self, failed_indices: Optional[Iterable[int]] = None) -> list[BulkResult[T]]:
        """Re-run only items whose last outcome was rejected.

        Indices that were fulfilled or cancelled are ignored even if passed in.
        """
        if self._running:
            raise RuntimeError("bulk run already in progress")
        rejected = set(self.failed_indices())
        requested = rejected if failed_indices is None else set(failed_indices)
        skipped = sorted(requested - rejected)
        if skipped:
            logger.info(
                "Bulk retry skipping non-failed items | run_id=%s | indices=%s",
                self._run_id,
                skipped,
            )
        indices = sorted(requested & rejected)
        if not indices:
            return self.results

        self._cancelled = False
        self._processed -= len(indices)
        for index in indices:
            self._set(index, _PENDING, notify=False)
        return await self._run(indices, label="retry")

    async def _run(self, indices: list[int], *, label: str) -> list[BulkResult[T]]:
        self._running = True
        self._run_id = self._run_id or str(uuid4())
        queue = iter(indices)
        worker_count = min(self._concurrency, len(indices))
        logger.info(
            "Bulk run %s | run_id=%s | items=%s | concurrency=%s",
            label,
            self._run_id,
            len(indices),
            worker_count,
        )
        try:
            await asyncio.gather(*(self._worker(queue) for _ in range(worker_count)))
        finally:
            self._running = False

        summary = self.summary()
        logger.info(
            "Bulk run finished | run_id=%s | fulfilled=%s | rejected=%s | cancelled=%s",
            self._run_id,
            summary[BulkItemStatus.FULFILLED.value],
            summary[BulkItemStatus.REJECTED.value],
            summary[BulkItemStatus.CANCELLED.value],
        )
        return self.results

    async def _worker(self, queue: Iterator[int]) -> None:
        # The shared iterator is only advanced between awaits, so no two
        # workers ever receive the same index.
        for index in queue:
            if self._cancelled:
                self._processed += 1
                self._set(index, _CANCELLED)
                continue

            self._set(index, _PROCESSING)
            try:
                value = await self._tasks[index].operation()
            except Exception as exc:
                outcome: BulkResult[T] = BulkResult(status=BulkItemStatus.REJECTED, error=exc)
                logger.warning(
                    "Bulk item failed | run_id=%s | index=%s | key=%s | error=%s: %s",
                    self._run_id,
                    index,
                    self._tasks[index].key,
                    type(exc).__name__,
                    exc,
                )
            else:
                outcome = BulkResult(status=BulkItemStatus.FULFILLED, value=value)
            self._processed += 1
            self._set(index, outcome)

    def _set(self, index: int, result: BulkResult[T], *, notify: bool = True) -> None:
        self._results[index] = result
        if notify and self._on_progress is not None:
            try:
                self._on_progress(index, result)
            except Exception:
                logger.exception("Bulk progress callback failed | index=%s", index)

    def summary(self) -> dict[str, int]:
        counts = {status.value: 0 for status in BulkItemStatus}
        for result in self._results:
            counts[result.status.value] += 1
        return counts
