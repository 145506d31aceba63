"""
Circuit breaker guarding a push provider.

States:
    - CLOSED: deliveries pass through
    - OPEN: failure threshold reached, deliveries are skipped without I/O

Transitions:
    CLOSED -> OPEN: failure_count >= threshold
    OPEN -> CLOSED: more than ``timeout`` seconds since the last failure,
        checked lazily by ``is_open()``; counters reset

There is no background timer. One breaker is shared by every concurrent send
on a channel and is not locked; under concurrency the counts may be
approximate and the trip point can shift by a few calls.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker with an injectable clock."""

    def __init__(
        self,
        name: str,
        threshold: int = 5,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        if timeout < 0:
            raise ValueError("timeout must be >= 0")
        self.name = name
        self.threshold = threshold
        self.timeout = timeout
        self._clock = clock
        self.failure_count = 0
        self.last_failure_time: float | None = None

    def is_open(self) -> bool:
        """Check whether calls should be skipped, closing the circuit if it has cooled down."""
        if self.failure_count < self.threshold:
            return False
        if self.last_failure_time is None:
            return False

        elapsed = self._clock() - self.last_failure_time
        if elapsed > self.timeout:
            logger.info(
                "Circuit breaker %s closing after %.1fs cool-down (failures: %d)",
                self.name, elapsed, self.failure_count,
            )
            self.reset()
            return False
        return True

    @property
    def state(self) -> CircuitState:
        return CircuitState.OPEN if self.is_open() else CircuitState.CLOSED

    def record_success(self) -> None:
        self.failure_count = 0
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.failure_count == self.threshold:
            logger.warning(
                "Circuit breaker %s opened after %d consecutive failures",
                self.name, self.failure_count,
            )

    def reset(self) -> None:
        self.failure_count = 0
        self.last_failure_time = None

    def snapshot(self) -> dict:
        """Current state for status endpoints."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failureCount": self.failure_count,
            "threshold": self.threshold,
            "timeout": self.timeout,
        }

    def __repr__(self) -> str:
        return f"<CircuitBreaker {self.name} failures={self.failure_count}/{self.threshold}>"
