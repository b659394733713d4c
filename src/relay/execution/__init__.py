"""Execution primitives (breaker, rate limiter, retry, timeout), the run queue and the trigger entry point.

The queue and trigger depend on the engine, so import them from their
modules: ``relay.execution.queue`` and ``relay.execution.trigger``.
"""

from relay.execution.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitOpenError, CircuitState
from relay.execution.rate_limit import KeyedRateLimiter, RateLimitExceeded, TokenBucketLimiter
from relay.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryContext,
    RetryStrategy,
    TransientBackoff,
)
from relay.execution.timeout import TimeoutExpired, run_with_timeout

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "KeyedRateLimiter",
    "RateLimitExceeded",
    "TokenBucketLimiter",
    "ConstantBackoff",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "TransientBackoff",
    "TimeoutExpired",
    "run_with_timeout",
]
