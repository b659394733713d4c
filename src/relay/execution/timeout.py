"""Timeout enforcement for capability calls.

A capability call that hangs must not hold a queue slot forever. Each call
runs on a short-lived worker thread and the caller waits on it with a
deadline; when the deadline passes the caller gets ``TimeoutExpired`` and
moves on.

Architecture:
    ::

        caller thread                       worker thread
        ─────────────                       ─────────────
        run_with_timeout(f, 30) ──submit──▶ f(*args)
             │ future.result(timeout=30)       │
             ├─ result   ◀──────────────────── return
             └─ TimeoutExpired after 30s       (keeps running; its result
                                                is discarded)

    Python cannot kill a thread, so an expired call keeps running in the
    background until it returns on its own. The executor is shut down
    without waiting so the caller is released at the deadline.

Coroutine functions are run with ``asyncio.run`` on the worker thread, so
async capabilities get the same deadline as sync ones.

Tags:
    relay-core, execution, timeout, deadline, threads
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import time
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the caller waited
        operation: Name/description of the operation
    """

    def __init__(self, timeout: float, elapsed: float | None = None, operation: str = "operation"):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        message = f"{operation} timed out after {timeout:g}s"
        super().__init__(message)


def _invoke(func: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return asyncio.run(_await(result))
    return result


async def _await(awaitable: Any) -> Any:
    return await awaitable


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable with a timeout using thread isolation.

    Raises:
        TimeoutExpired: If execution exceeds timeout
        Exception: Any exception raised by func
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix="relay-call"
    )
    try:
        future = executor.submit(_invoke, func, args or (), kwargs or {})
        try:
            return future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TimeoutExpired(
                timeout=timeout_seconds,
                elapsed=time.monotonic() - start,
                operation=operation or getattr(func, "__name__", "unknown"),
            ) from None
    finally:
        executor.shutdown(wait=False)


__all__ = ["TimeoutExpired", "run_with_timeout"]
