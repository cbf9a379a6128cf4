"""Bounded retry with a fixed delay between attempts."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

ErrorCallback = Callable[[int, int, BaseException], None]


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
    on_error: Optional[ErrorCallback] = None,
) -> T:
    """Await ``operation()`` up to *max_attempts* times.

    *on_error* is called as ``on_error(attempt, max_attempts, exc)`` after
    every failed attempt. The last exception is re-raised once attempts run
    out. No jitter, no backoff growth.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if on_error is not None:
                on_error(attempt, max_attempts, e)
            if attempt >= max_attempts:
                raise
        if delay > 0:
            await asyncio.sleep(delay)
        attempt += 1


def logging_callback(logger, event: str, **context) -> ErrorCallback:
    """Build an ``on_error`` callback that logs each failed attempt."""

    def _log(attempt: int, max_attempts: int, error: BaseException) -> None:
        logger.warning(event, attempt=attempt, max_attempts=max_attempts, error=str(error), **context)

    return _log
