"""Rate limiting - token bucket with a bounded waiting line.

Capabilities front external APIs that enforce their own rate limits.
Every capability path gets a token bucket: calls within the burst pass
immediately, calls beyond it wait for tokens to refill. Waiting is
bounded. Once ``max_waiters`` callers are already queued on a bucket, the
next caller is refused with ``RateLimitExceeded`` instead of piling on.

ARCHITECTURE
────────────
::

    TokenBucketLimiter(rate=5, capacity=10, max_waiters=50)
      acquire(block=False) → True / False
      acquire(block=True)  → True after waiting, or
                             RateLimitExceeded when the line is full,
                             False when ``timeout`` expires

    KeyedRateLimiter       ─ one bucket per key (capability path)

Related modules:
    circuit_breaker.py - fail-fast on sustained failures
    timeout.py         - enforce deadlines

Tags:
    relay-core, execution, rate-limit, throttle, token-bucket
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field


class RateLimitExceeded(Exception):
    """Raised when the waiting line for a bucket is full."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class TokenBucketLimiter:
    """Token bucket rate limiter.

    Tokens are added at a fixed rate up to capacity.
    Allows bursts up to capacity, then limits to rate.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens (burst size)
        max_waiters: Callers allowed to block at once
    """

    rate: float
    capacity: float
    max_waiters: int = 50
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    _tokens: float = field(default=0.0, init=False)
    _last_update: float = field(default=0.0, init=False)
    _waiters: int = field(default=0, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.rate <= 0 or self.capacity <= 0:
            raise ValueError("rate and capacity must be positive")
        self._tokens = self.capacity
        self._last_update = self.clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self._last_update
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_update = now

    def _wait_time_locked(self, tokens: float) -> float:
        if self._tokens >= tokens:
            return 0.0
        return (tokens - self._tokens) / self.rate

    def try_acquire(self, tokens: float = 1) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def acquire(self, tokens: float = 1, block: bool = False, timeout: float | None = None) -> bool:
        """Take ``tokens``, optionally waiting for them."""
        if self.try_acquire(tokens):
            return True
        if not block:
            return False

        with self._lock:
            if self._waiters >= self.max_waiters:
                raise RateLimitExceeded(
                    f"Rate limit backlog full ({self._waiters} waiting)",
                    retry_after=self._wait_time_locked(tokens),
                )
            self._waiters += 1

        deadline = None if timeout is None else self.clock() + timeout
        try:
            while True:
                with self._lock:
                    self._refill()
                    if self._tokens >= tokens:
                        self._tokens -= tokens
                        return True
                    wait = self._wait_time_locked(tokens)
                if deadline is not None:
                    remaining = deadline - self.clock()
                    if remaining <= 0:
                        return False
                    wait = min(wait, remaining)
                self.sleep(max(wait, 0.001))
        finally:
            with self._lock:
                self._waiters -= 1

    def get_wait_time(self, tokens: float = 1) -> float:
        """Get seconds until tokens available."""
        with self._lock:
            self._refill()
            return self._wait_time_locked(tokens)

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    @property
    def waiting(self) -> int:
        return self._waiters


class KeyedRateLimiter:
    """One token bucket per key, created on first use."""

    def __init__(self, rate: float, capacity: float, max_waiters: int = 50):
        self.rate = rate
        self.capacity = capacity
        self.max_waiters = max_waiters
        self._buckets: dict[str, TokenBucketLimiter] = {}
        self._lock = threading.Lock()

    def bucket(self, key: str) -> TokenBucketLimiter:
        with self._lock:
            limiter = self._buckets.get(key)
            if limiter is None:
                limiter = TokenBucketLimiter(
                    rate=self.rate, capacity=self.capacity, max_waiters=self.max_waiters
                )
                self._buckets[key] = limiter
            return limiter

    def acquire(self, key: str, tokens: float = 1, block: bool = False, timeout: float | None = None) -> bool:
        return self.bucket(key).acquire(tokens, block=block, timeout=timeout)
