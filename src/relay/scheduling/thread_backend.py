"""Threading-based scheduler backend (the default).

┌──────────────────────────────────────────────────────────────────────┐
│  ThreadSchedulerBackend                                              │
│                                                                      │
│   start()                                                            │
│      │                                                               │
│      ▼                                                               │
│   Daemon Thread (loop)                                               │
│      while not stop_event.wait(interval):                            │
│          tick_count += 1                                             │
│          last_tick = now()                                           │
│          tick_callback()          (asyncio.run if it is a coroutine) │
│                                                                      │
│   stop()                                                             │
│      stop_event.set(); thread.join(timeout=5.0)                      │
└──────────────────────────────────────────────────────────────────────┘

A tick that raises is logged and the loop carries on with the next one.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from datetime import datetime
from typing import Any

from relay.core.logging import get_logger
from relay.core.timestamps import utc_now
from relay.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Calls the tick callback from a daemon thread at a fixed interval.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(scheduler.tick, interval_seconds=1.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 1.0
        self._started = False
        self._lock = threading.Lock()

    def start(self, tick_callback: TickCallback, interval_seconds: float = 1.0) -> None:
        if self._started:
            logger.warning("scheduler_backend.already_started", backend=self.name)
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("scheduler_backend.started", backend=self.name, interval_seconds=interval_seconds)
            while not self._stop_event.wait(interval_seconds):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = utc_now()
                try:
                    result = tick_callback()
                    if inspect.isawaitable(result):
                        asyncio.run(_await(result))
                except Exception as exc:
                    logger.exception("scheduler_backend.tick_failed", error=str(exc))
            logger.info("scheduler_backend.stopped", backend=self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name="relay-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning("scheduler_backend.stop_timeout", backend=self.name)
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )


async def _await(awaitable: Any) -> Any:
    return await awaitable


__all__ = ["ThreadSchedulerBackend"]
