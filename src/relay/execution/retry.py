"""Retry strategies with exponential backoff and jitter.

Used where relay retries on its own behalf: the run recorder's background
write queue, and capability calls whose guard policy allows retries of
transient failures.

Example:
    >>> from relay.execution.retry import ExponentialBackoff, RetryContext
    >>> strategy = ExponentialBackoff(max_retries=5, base_delay=0.5, max_delay=30.0)
    >>> strategy.next_delay(0), strategy.next_delay(3)   # ≈0.5s, ≈4s
    >>> RetryContext(strategy).run(flaky_write)
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from relay.core.errors import is_retryable

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies.

    ``attempt`` is the number of retries already made (0 before the first
    retry).
    """

    max_retries: int = 0

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        ...

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        if error is not None:
            return self.is_retryable(error)
        return True

    def is_retryable(self, error: BaseException) -> bool:
        return True


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter

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
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable_errors: tuple[type[BaseException], ...] | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)
        return delay

    def is_retryable(self, error: BaseException) -> bool:
        if self.retryable_errors is None:
            return True
        return isinstance(error, self.retryable_errors)


@dataclass
class TransientBackoff(ExponentialBackoff):
    """Exponential backoff that only retries errors flagged as retryable."""

    def is_retryable(self, error: BaseException) -> bool:
        return is_retryable(error)


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    max_retries: int = 3
    delay: float = 1.0

    def next_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    max_retries: int = 0

    def next_delay(self, attempt: int) -> float:
        return 0.0


@dataclass
class RetryContext:
    """Runs a callable under a retry strategy.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_retries=3))
        >>> result = ctx.run(lambda: call_api())
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, BaseException, float], None] | None = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    attempts: int = field(default=0, init=False)
    last_error: BaseException | None = field(default=None, init=False)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute ``func``; re-raises the last error once retries are exhausted."""
        while True:
            self.attempts += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                retries_done = self.attempts - 1
                if not self.strategy.should_retry(retries_done, e):
                    raise
                delay = self.strategy.next_delay(retries_done)
                if self.on_retry:
                    self.on_retry(self.attempts, e, delay)
                self.sleep(delay)


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "TransientBackoff",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
]
