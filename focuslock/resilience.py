"""
Retry and circuit breaking for the push channel.

FCM calls can fail transiently (timeouts, 5xx) or for long stretches (bad
credentials, outage). retry_with_backoff absorbs the first kind; the
CircuitBreaker stops the dispatcher from spending every event on the second.
"""

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

JITTER_FRACTION = 0.1


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (0-based), without jitter."""
        return min(self.base_delay * self.exponential_base**attempt, self.max_delay)


class CircuitBreakerState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    CLOSED counts consecutive failures and opens at *failure_threshold*.
    OPEN rejects until *cooldown_seconds* have passed since the last
    failure, then hands out a single HALF_OPEN probe. The probe's outcome
    closes or reopens the circuit.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.failure_count = 0
        self.state = CircuitBreakerState.CLOSED
        self.opened_at: float | None = None
        self._clock = clock
        self._lock = threading.Lock()

    def can_execute(self) -> bool:
        with self._lock:
            match self.state:
                case CircuitBreakerState.CLOSED:
                    return True
                case CircuitBreakerState.OPEN if (
                    self.opened_at is not None
                    and self._clock() - self.opened_at >= self.cooldown_seconds
                ):
                    self.state = CircuitBreakerState.HALF_OPEN
                    return True
                case _:
                    return False

    def record_success(self) -> None:
        with self._lock:
            self.state = CircuitBreakerState.CLOSED
            self.failure_count = 0
            self.opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.opened_at = self._clock()
            tripped = self.failure_count >= self.failure_threshold
            if self.state is CircuitBreakerState.HALF_OPEN or tripped:
                if self.state is not CircuitBreakerState.OPEN:
                    logger.warning("circuit open (%d consecutive failures)", self.failure_count)
                self.state = CircuitBreakerState.OPEN

    def to_dict(self) -> dict:
        with self._lock:
            return {"state": self.state.value, "failure_count": self.failure_count}


def retry_with_backoff(
    func: Callable[[], T],
    config: RetryConfig,
    retry_on: tuple[type[Exception], ...],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run *func* up to ``max_retries + 1`` times.

    Only exceptions in *retry_on* are retried; the final one is re-raised.
    Each wait is the configured backoff plus up to 10% random jitter.
    """
    attempts = config.max_retries + 1
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            if attempt == attempts - 1:
                logger.error("giving up after %d attempts: %s", attempts, exc)
                raise
            delay = config.delay_for(attempt)
            delay += random.uniform(0, delay * JITTER_FRACTION)  # noqa: S311
            logger.warning(
                "attempt %d/%d failed (%s), retrying in %.2fs", attempt + 1, attempts, exc, delay
            )
            sleep(delay)
    raise AssertionError("unreachable")
