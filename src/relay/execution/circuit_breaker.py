"""Circuit breaker pattern for capability calls.

Fails fast when a capability keeps failing, so runs stop queueing up behind
a dead upstream service. One breaker exists per capability path.

States:
    CLOSED: Normal operation, calls pass through
    OPEN: Failing fast, calls rejected immediately
    HALF_OPEN: Cool-down elapsed; a limited number of trial calls pass

Transitions:
    CLOSED    --N consecutive failures-->  OPEN
    OPEN      --recovery_timeout elapsed-> HALF_OPEN
    HALF_OPEN --success_threshold trial calls succeed--> CLOSED
    HALF_OPEN --any trial call fails--> OPEN

Example:
    >>> from relay.execution.circuit_breaker import CircuitBreaker
    >>> breaker = CircuitBreaker(name="ai.openai.chat", failure_threshold=5)
    >>> result = breaker.call(client.chat, prompt)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when circuit is open and rejecting requests."""

    def __init__(self, message: str = "Circuit breaker is open", retry_in: float | None = None):
        super().__init__(message)
        self.retry_in = retry_in


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0

    @property
    def failure_rate(self) -> float:
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass
class CircuitBreaker:
    """Circuit breaker for fault tolerance.

    Attributes:
        name: Identifier for this circuit (the capability path)
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to wait before probing recovery
        success_threshold: Trial call successes needed in half-open to close
        half_open_max_calls: Max concurrent trial calls in half-open state
        clock: Monotonic time source (injectable for tests)
    """

    name: str = "default"
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 1
    half_open_max_calls: int = 1
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def retry_in(self) -> float | None:
        """Seconds until a half-open trial call is allowed (``None`` unless open)."""
        with self._lock:
            if self._state is not CircuitState.OPEN or self._opened_at is None:
                return None
            return max(0.0, self.recovery_timeout - (self.clock() - self._opened_at))

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self.clock() - self._opened_at >= self.recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        self._state = new_state
        self._stats.state_changes += 1
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None
        elif new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
            self._half_open_calls = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0

    def allow_request(self) -> bool:
        """Check whether a call may proceed (reserves a trial slot in half-open)."""
        with self._lock:
            self._check_state_transition()
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                self._stats.rejected_requests += 1
                return False
            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
            self._stats.rejected_requests += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_requests += 1
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = max(0, self._half_open_calls - 1)
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            else:
                self._failure_count = 0

    def release(self) -> None:
        """Give back a half-open trial slot for a call that never ran."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = max(0, self._half_open_calls - 1)

    def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            self._stats.failed_requests += 1

            if self._state == CircuitState.CLOSED:
                if self._failure_count >= self.failure_threshold:
                    self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        with self._lock:
            self._transition_to(CircuitState.OPEN)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute a function through the circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open
        """
        if not self.allow_request():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open, rejecting request",
                retry_in=self.retry_in(),
            )
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            self._check_state_transition()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "total_requests": self._stats.total_requests,
                "rejected_requests": self._stats.rejected_requests,
                "failure_rate": round(self._stats.failure_rate, 1),
            }


class CircuitBreakerRegistry:
    """Registry of named circuit breakers."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(self, name: str, **kwargs: Any) -> CircuitBreaker:
        with self._lock:
            if name not in self._breakers:
                kwargs.setdefault("failure_threshold", self.failure_threshold)
                kwargs.setdefault("recovery_timeout", self.recovery_timeout)
                self._breakers[name] = CircuitBreaker(name=name, **kwargs)
            return self._breakers[name]

    def list_all(self) -> list[str]:
        with self._lock:
            return list(self._breakers.keys())

    def reset_all(self) -> None:
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()

    def snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            return [breaker.snapshot() for breaker in self._breakers.values()]
