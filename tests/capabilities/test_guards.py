"""Tests for capability call guards and dispatch."""

import time

import pytest

from relay.capabilities.dispatcher import ModuleDispatcher
from relay.capabilities.guards import CapabilityGuards, GuardPolicy
from relay.core.errors import (
    CapabilityCallError,
    CapabilityRateLimitedError,
    CapabilityTimeoutError,
    CapabilityUnavailableError,
    ParameterMismatchError,
)
from relay.execution.retry import ConstantBackoff

PATH = "utilities.test.call"


class TestErrorMapping:
    def test_exception_wrapped(self):
        guards = CapabilityGuards(GuardPolicy(timeout=5.0))

        def bad():
            raise ValueError("bad input")

        with pytest.raises(CapabilityCallError) as excinfo:
            guards.call(PATH, bad)
        assert excinfo.value.message == f"Failed to execute {PATH}: bad input"
        assert isinstance(excinfo.value.__cause__, ValueError)
        assert excinfo.value.retryable is False

    def test_connection_errors_are_retryable(self):
        guards = CapabilityGuards(GuardPolicy(timeout=5.0))

        def down():
            raise ConnectionError("refused")

        with pytest.raises(CapabilityCallError) as excinfo:
            guards.call(PATH, down)
        assert excinfo.value.retryable is True

    def test_passes_arguments(self):
        guards = CapabilityGuards(GuardPolicy(timeout=5.0))
        assert guards.call(PATH, lambda a, b=0: a + b, (1,), {"b": 2}) == 3


class TestTimeout:
    def test_slow_call_times_out(self):
        guards = CapabilityGuards(GuardPolicy(timeout=0.05))
        with pytest.raises(CapabilityTimeoutError, match=r"timed out after 0.05s") as excinfo:
            guards.call(PATH, time.sleep, (0.5,))
        assert excinfo.value.retryable is True

    def test_per_path_override(self):
        policy = GuardPolicy(timeout=30.0, timeouts={PATH: 0.05})
        assert policy.timeout_for(PATH) == 0.05
        assert policy.timeout_for("utilities.other.call", declared=2.0) == 2.0
        assert policy.timeout_for("utilities.other.call") == 30.0

    def test_async_capability(self):
        async def fetch():
            return "done"

        guards = CapabilityGuards(GuardPolicy(timeout=5.0))
        assert guards.call(PATH, fetch) == "done"


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        guards = CapabilityGuards(GuardPolicy(timeout=5.0, failure_threshold=2, recovery_timeout=60.0))
        calls = []

        def failing():
            calls.append(1)
            raise RuntimeError("upstream down")

        for _ in range(2):
            with pytest.raises(CapabilityCallError):
                guards.call(PATH, failing)

        with pytest.raises(CapabilityUnavailableError, match="circuit open, retry in"):
            guards.call(PATH, failing)
        assert len(calls) == 2
        assert guards.snapshot()[0]["state"] == "open"

    def test_breakers_are_per_path(self):
        guards = CapabilityGuards(GuardPolicy(timeout=5.0, failure_threshold=1))

        def failing():
            raise RuntimeError("x")

        with pytest.raises(CapabilityCallError):
            guards.call(PATH, failing)
        assert guards.call("utilities.other.call", lambda: "ok") == "ok"


class TestRateLimit:
    def test_full_backlog_refuses(self):
        guards = CapabilityGuards(GuardPolicy(timeout=5.0, rate_per_second=0.01, burst=1, backlog=0))
        assert guards.call(PATH, lambda: 1) == 1
        with pytest.raises(CapabilityRateLimitedError, match="rate limit backlog full"):
            guards.call(PATH, lambda: 2)

    def test_refusal_does_not_trip_breaker(self):
        guards = CapabilityGuards(
            GuardPolicy(timeout=5.0, rate_per_second=0.01, burst=1, backlog=0, failure_threshold=1)
        )
        guards.call(PATH, lambda: 1)
        with pytest.raises(CapabilityRateLimitedError):
            guards.call(PATH, lambda: 2)
        assert guards.breakers.get(PATH).failure_count == 0


class TestRetry:
    def test_retries_transient_failure(self):
        guards = CapabilityGuards(GuardPolicy(timeout=5.0, retry=ConstantBackoff(max_retries=2, delay=0.0)))
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise ConnectionError("reset")
            return "ok"

        assert guards.call(PATH, flaky) == "ok"
        assert len(attempts) == 2


class TestDispatcher:
    def test_dispatch_by_name(self, dispatcher):
        assert dispatcher.dispatch("utilities.math.subtract", {"b": 3, "a": 2}) == -1

    def test_numeric_strings(self, dispatcher):
        assert dispatcher.dispatch("utilities.math.add", {"a": "2", "b": "3.5"}) == 5.5

    def test_alias_for_optional(self, dispatcher):
        result = dispatcher.dispatch("utilities.datetime.add_days", {"date": "2024-01-30T00:00:00+00:00", "amount": 3})
        assert result.startswith("2024-02-02")

    def test_mismatch_raised_unwrapped(self, dispatcher):
        with pytest.raises(ParameterMismatchError):
            dispatcher.dispatch("utilities.math.add", {"a": 1})

    def test_registered_capability(self, registry):
        registry.register("utilities.test.greet", lambda name: f"hi {name}")
        dispatcher = ModuleDispatcher(registry, CapabilityGuards(GuardPolicy(timeout=5.0)))
        assert dispatcher.dispatch("utilities.test.greet", {"name": "ada"}) == "hi ada"
