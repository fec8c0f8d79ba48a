"""Bounded exponential backoff for adapter calls."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from leadscout.errors import is_retryable

log = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float, factor: float, max_delay: float) -> float:
    """Delay before *attempt* (1-based); attempt 2 waits ``base_delay``."""
    if attempt < 2:
        return 0.0
    return min(base_delay * factor ** (attempt - 2), max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 10.0,
    sleep: Sleep = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run *operation*, retrying failures that are not marked non-retryable.

    Exceptions with ``retryable = False`` (not-found, unauthorized,
    rate-limited) are raised immediately. After *max_attempts* the last
    exception is re-raised unchanged. Only the calling task sleeps.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                log.debug("%s failed with non-retryable %s: %s", label, type(exc).__name__, exc)
                raise
            if attempt >= max_attempts:
                log.warning("%s failed after %d attempts: %s", label, attempt, exc)
                raise
            attempt += 1
            delay = backoff_delay(attempt, base_delay, factor, max_delay)
            log.warning(
                "%s attempt %d failed (%s), %d retries left, waiting %.1fs",
                label, attempt - 1, exc, max_attempts - attempt + 1, delay,
            )
            await sleep(delay)
