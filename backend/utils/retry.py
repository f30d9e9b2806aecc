"""Exponential backoff for idempotent upstream calls."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from backend.utils.logger import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    initial_delay_seconds: float = 0.3,
    factor: float = 2.0,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    operation_name: str = "operation",
) -> T:
    """Await `operation`, retrying failures with exponential backoff and jitter.

    Only exceptions accepted by `should_retry` are retried; anything else, and
    the last failure once attempts are exhausted, propagates unchanged.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            attempt += 1
            retryable = should_retry(exc) if should_retry is not None else True
            if not retryable or attempt >= attempts:
                if retryable:
                    logger.error(
                        "Retries exhausted | operation=%s | attempts=%s | error=%s",
                        operation_name,
                        attempts,
                        exc,
                    )
                raise
            delay = initial_delay_seconds * (factor ** (attempt - 1))
            jitter = random.uniform(0.0, 0.1)
            logger.warning(
                "Retrying | operation=%s | attempt=%s/%s | delay=%.2fs | error=%s",
                operation_name,
                attempt,
                attempts,
                delay + jitter,
                exc,
            )
            await asyncio.sleep(delay + jitter)
