"""
Bounded retry with exponential backoff for provider calls.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(base_delay: float, factor: float = 2.0) -> Callable[[int], float]:
    """Build a backoff function: base_delay * factor ** attempt (attempt is 0-indexed)."""

    def backoff(attempt: int) -> float:
        return base_delay * (factor ** attempt)

    return backoff


def _always_retry(error: BaseException) -> bool:
    return True


class RetryPolicy:
    """Retry an async operation up to ``max_attempts`` times.

    ``is_retryable`` decides whether a failure is worth another attempt;
    non-retryable errors are re-raised immediately. After the last attempt
    the final error is re-raised unchanged so callers can classify it.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Callable[[int], float] | None = None,
        is_retryable: Callable[[BaseException], bool] = _always_retry,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff = backoff or exponential_backoff(0.1)
        self.is_retryable = is_retryable
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt == self.max_attempts - 1:
                    raise
                delay = self.backoff(attempt)
                logger.debug(
                    "Attempt %d/%d failed (%s), retrying in %.0fms",
                    attempt + 1, self.max_attempts, e, delay * 1000,
                )
                await self._sleep(delay)
        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without result")

    def __repr__(self) -> str:
        return f"<RetryPolicy attempts={self.max_attempts}>"
