"""
Per-capability call guards.

Every dispatched call passes through three guards keyed by capability
path, so one slow or failing upstream service cannot starve every run:

    ┌──────────────────┐   ┌──────────────────┐   ┌──────────────────┐
    │ CircuitBreaker   │──▶│ TokenBucket      │──▶│ run_with_timeout │──▶ f(...)
    │ open → refuse    │   │ wait ≤ backlog   │   │ deadline → fail  │
    └──────────────────┘   └──────────────────┘   └──────────────────┘

Failures that reach the caller are mapped to capability errors:

    circuit open          → CapabilityUnavailableError
    backlog full          → CapabilityRateLimitedError
    deadline exceeded     → CapabilityTimeoutError
    capability raised     → CapabilityCallError("Failed to execute <path>: <msg>")

Timeouts and exceptions count as breaker failures; refusals by the rate
limiter do not (the upstream never saw the call). An optional retry policy
re-attempts calls that fail with a retryable error before surfacing.

Tags:
    capability, resilience, circuit-breaker, rate-limit, timeout, relay-core
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from relay.core.errors import (
    CapabilityCallError,
    CapabilityRateLimitedError,
    CapabilityTimeoutError,
    CapabilityUnavailableError,
    RelayError,
    error_message,
)
from relay.core.logging import get_logger
from relay.execution.circuit_breaker import CircuitBreakerRegistry
from relay.execution.rate_limit import KeyedRateLimiter, RateLimitExceeded
from relay.execution.retry import NoRetry, RetryContext, RetryStrategy
from relay.execution.timeout import TimeoutExpired, run_with_timeout

logger = get_logger(__name__)


@dataclass
class GuardPolicy:
    """Limits applied to every capability unless overridden per path."""

    timeout: float = 30.0
    timeouts: Mapping[str, float] = field(default_factory=dict)
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    rate_per_second: float | None = None
    burst: int | None = None
    backlog: int = 50
    retry: RetryStrategy = field(default_factory=NoRetry)

    @classmethod
    def from_settings(cls, settings: Any) -> GuardPolicy:
        return cls(
            timeout=settings.capability_timeout,
            timeouts=dict(settings.capability_timeouts),
            failure_threshold=settings.breaker_failure_threshold,
            recovery_timeout=settings.breaker_recovery_timeout,
            rate_per_second=settings.rate_limit_per_second,
            burst=settings.rate_limit_burst,
            backlog=settings.rate_limit_backlog,
        )

    def timeout_for(self, path: str, declared: float | None = None) -> float:
        if path in self.timeouts:
            return self.timeouts[path]
        return declared if declared is not None else self.timeout


class CapabilityGuards:
    """Breaker + rate limiter + timeout around capability calls."""

    def __init__(self, policy: GuardPolicy | None = None):
        self.policy = policy or GuardPolicy()
        self.breakers = CircuitBreakerRegistry(
            failure_threshold=self.policy.failure_threshold,
            recovery_timeout=self.policy.recovery_timeout,
        )
        self.limiter: KeyedRateLimiter | None = None
        if self.policy.rate_per_second:
            self.limiter = KeyedRateLimiter(
                rate=self.policy.rate_per_second,
                capacity=self.policy.burst or max(1, int(self.policy.rate_per_second)),
                max_waiters=self.policy.backlog,
            )

    def call(
        self,
        path: str,
        func: Callable[..., Any],
        args: tuple[Any, ...] = (),
        kwargs: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Invoke ``func`` for capability ``path`` under all guards."""
        context = RetryContext(
            self.policy.retry,
            on_retry=lambda attempt, error, delay: logger.warning(
                "capability.retry", path=path, attempt=attempt, delay=round(delay, 2), error=str(error)
            ),
        )
        return context.run(self._call_once, path, func, args, kwargs or {}, timeout)

    def _call_once(
        self,
        path: str,
        func: Callable[..., Any],
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        timeout: float | None,
    ) -> Any:
        breaker = self.breakers.get_or_create(path)
        if not breaker.allow_request():
            retry_in = breaker.retry_in()
            logger.warning("capability.circuit_open", path=path, retry_in=retry_in)
            raise CapabilityUnavailableError(path, retry_in)

        if self.limiter is not None:
            try:
                self.limiter.acquire(path, block=True)
            except RateLimitExceeded as exc:
                breaker.release()
                logger.warning("capability.rate_limited", path=path, error=str(exc))
                raise CapabilityRateLimitedError(path, cause=exc) from exc

        limit = self.policy.timeout_for(path, timeout)
        started = time.monotonic()
        try:
            result = run_with_timeout(func, limit, operation=path, args=args, kwargs=kwargs)
        except TimeoutExpired as exc:
            breaker.record_failure(exc)
            logger.error("capability.timeout", path=path, timeout=limit)
            raise CapabilityTimeoutError(path, limit, cause=exc) from exc
        except RelayError as exc:
            breaker.record_failure(exc)
            if isinstance(exc, CapabilityCallError):
                raise
            raise CapabilityCallError(path, error_message(exc), retryable=exc.retryable, cause=exc) from exc
        except Exception as exc:
            breaker.record_failure(exc)
            logger.error(
                "capability.failed",
                path=path,
                error=error_message(exc),
                error_type=type(exc).__name__,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise CapabilityCallError(
                path,
                error_message(exc),
                retryable=isinstance(exc, (ConnectionError, TimeoutError)),
                cause=exc,
            ) from exc

        breaker.record_success()
        return result

    def snapshot(self) -> list[dict[str, Any]]:
        return self.breakers.snapshot()


__all__ = ["GuardPolicy", "CapabilityGuards"]
