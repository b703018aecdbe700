"""Backoff strategies for reopening physical connections.

relstore never retries statements. The only retry it performs is opening a
new physical connection for the pool, where a networked backend may be
briefly unreachable. The policy is bounded exponential backoff with jitter.

Example:
    >>> strategy = ExponentialBackoff(max_retries=3, base_delay=0.5, max_delay=10.0, jitter=False)
    >>> [strategy.next_delay(attempt) for attempt in range(3)]
    [0.5, 1.0, 2.0]
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry ``attempt`` (0 = first retry)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` failures."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retryable_errors: Exception types that are retryable (None = all)
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable_errors: tuple[type[Exception], ...] | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        if error is not None and self.retryable_errors is not None:
            return isinstance(error, self.retryable_errors)
        return True


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


def retry_call(
    fn: Callable[[], T],
    strategy: RetryStrategy,
    *,
    retry_if: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds or ``strategy`` gives up.

    The last error is re-raised unchanged. Errors for which ``retry_if``
    returns False are raised immediately. ``on_retry(attempt, error, delay)``
    runs before each sleep.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if retry_if is not None and not retry_if(e):
                raise
            if not strategy.should_retry(attempt, e):
                raise
            delay = strategy.next_delay(attempt)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            sleep(delay)
            attempt += 1


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "NoRetry",
    "retry_call",
]
