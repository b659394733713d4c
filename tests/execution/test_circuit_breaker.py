"""Tests for the circuit breaker state machine."""

import pytest

from relay.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
)


def _failing():
    raise RuntimeError("down")


def _breaker(clock, **kwargs):
    kwargs.setdefault("failure_threshold", 3)
    kwargs.setdefault("recovery_timeout", 10.0)
    return CircuitBreaker(name="utilities.test.call", clock=clock, **kwargs)


class TestClosed:
    def test_opens_after_consecutive_failures(self, clock):
        breaker = _breaker(clock)
        for _ in range(3):
            with pytest.raises(RuntimeError):
                breaker.call(_failing)
        assert breaker.state is CircuitState.OPEN

    def test_success_resets_failure_count(self, clock):
        breaker = _breaker(clock)
        for _ in range(2):
            with pytest.raises(RuntimeError):
                breaker.call(_failing)
        assert breaker.call(lambda: "ok") == "ok"
        with pytest.raises(RuntimeError):
            breaker.call(_failing)
        assert breaker.state is CircuitState.CLOSED


class TestOpen:
    def test_rejects_with_retry_in(self, clock):
        breaker = _breaker(clock)
        breaker.force_open()
        clock.advance(4.0)
        with pytest.raises(CircuitOpenError) as excinfo:
            breaker.call(lambda: "never")
        assert excinfo.value.retry_in == pytest.approx(6.0)
        assert breaker.stats.rejected_requests == 1

    def test_half_open_after_recovery_timeout(self, clock):
        breaker = _breaker(clock)
        breaker.force_open()
        clock.advance(10.0)
        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker.retry_in() is None


class TestHalfOpen:
    def test_trial_success_closes(self, clock):
        breaker = _breaker(clock)
        breaker.force_open()
        clock.advance(10.0)
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state is CircuitState.CLOSED

    def test_trial_failure_reopens(self, clock):
        breaker = _breaker(clock)
        breaker.force_open()
        clock.advance(10.0)
        with pytest.raises(RuntimeError):
            breaker.call(_failing)
        assert breaker.state is CircuitState.OPEN
        assert breaker.retry_in() == pytest.approx(10.0)

    def test_limits_concurrent_trial_calls(self, clock):
        breaker = _breaker(clock, half_open_max_calls=1)
        breaker.force_open()
        clock.advance(10.0)
        assert breaker.allow_request() is True
        assert breaker.allow_request() is False
        breaker.release()
        assert breaker.allow_request() is True

    def test_success_threshold(self, clock):
        breaker = _breaker(clock, success_threshold=2, half_open_max_calls=2)
        breaker.force_open()
        clock.advance(10.0)
        breaker.call(lambda: 1)
        assert breaker.state is CircuitState.HALF_OPEN
        breaker.call(lambda: 2)
        assert breaker.state is CircuitState.CLOSED


class TestRegistry:
    def test_get_or_create_uses_defaults(self):
        registry = CircuitBreakerRegistry(failure_threshold=7, recovery_timeout=3.0)
        breaker = registry.get_or_create("a.b.c")
        assert breaker.failure_threshold == 7
        assert registry.get_or_create("a.b.c") is breaker
        assert registry.list_all() == ["a.b.c"]

    def test_reset_all(self):
        registry = CircuitBreakerRegistry()
        registry.get_or_create("a.b.c").force_open()
        registry.reset_all()
        assert registry.get("a.b.c").state is CircuitState.CLOSED

    def test_snapshot(self):
        registry = CircuitBreakerRegistry()
        registry.get_or_create("a.b.c")
        snapshot = registry.snapshot()
        assert snapshot[0]["name"] == "a.b.c"
        assert snapshot[0]["state"] == "closed"
