"""Tests for deadline enforcement."""

import time

import pytest

from relay.execution.timeout import TimeoutExpired, run_with_timeout


class TestRunWithTimeout:
    def test_returns_result(self):
        assert run_with_timeout(lambda a, b: a * b, 1.0, args=(3, 4)) == 12

    def test_kwargs(self):
        assert run_with_timeout(lambda *, name: name.upper(), 1.0, kwargs={"name": "x"}) == "X"

    def test_raises_function_error(self):
        def bad():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_with_timeout(bad, 1.0)

    def test_deadline_releases_caller(self):
        started = time.monotonic()
        with pytest.raises(TimeoutExpired) as excinfo:
            run_with_timeout(time.sleep, 0.05, operation="utilities.test.slow", args=(1.0,))
        assert time.monotonic() - started < 0.9
        assert excinfo.value.operation == "utilities.test.slow"
        assert str(excinfo.value) == "utilities.test.slow timed out after 0.05s"
        assert isinstance(excinfo.value, TimeoutError)

    def test_coroutine_function(self):
        async def compute():
            return 42

        assert run_with_timeout(compute, 1.0) == 42

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            run_with_timeout(lambda: None, 0)
