"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                          │
│                                                                      │
│  Backends control WHEN ticks happen; WorkflowScheduler controls      │
│  WHAT happens on each tick (re-sync triggers, fire due timers).      │
│                                                                      │
│   ┌─────────────────┐       tick()       ┌─────────────────────┐     │
│   │  Thread Backend │ ─────────────────► │  WorkflowScheduler  │     │
│   │  (default)      │                    │  - sync if due      │     │
│   └─────────────────┘                    │  - fire due timers  │     │
│                                          └─────────────────────┘     │
│   ┌─────────────────┐       tick()                                   │
│   │  Manual / test  │ ─────────────────►                             │
│   └─────────────────┘                                                │
└──────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], "Awaitable[None] | None"]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback at
    the requested interval. The callback may be sync or async.
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 1.0) -> None:
        """Start calling ``tick_callback`` every ``interval_seconds``."""
        ...

    def stop(self) -> None:
        """Stop the loop; waits for the current tick to finish."""
        ...

    def health(self) -> dict[str, Any]:
        """At least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


__all__ = ["TickCallback", "SchedulerBackend", "BackendHealth"]
