"""Workflow scheduler - fires time-based triggers.

Manifesto:
    The scheduler owns one timer per active cron workflow and nothing
    else. It never runs a workflow itself: a due timer becomes a
    ``scheduled`` invocation through the trigger entry point, which queues
    it (or, when no queue is running, executes it on a dedicated fallback
    pool so the timer thread is never blocked by a run).

Tags:
    scheduling, cron, croniter, timers, relay-core

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────┐
│  WorkflowScheduler                                                   │
│                                                                      │
│   backend tick (every tick_interval)                                 │
│      │                                                               │
│      ├── sync due? (every sync_interval) ──► refresh()               │
│      │       ├── list active cron workflows                          │
│      │       ├── arm new / re-arm changed expression or timezone     │
│      │       ├── disarm removed or no-longer-active workflows        │
│      │       └── reap stale ``running`` runs                         │
│      │                                                               │
│      └── for each armed timer with next_fire_at <= now:              │
│              advance next_fire_at (croniter.get_next)                │
│              fire(workflow_id)                                       │
│                 ├── trigger.can_queue → trigger.invoke(...)  (submit)│
│                 │     queue refuses   → fallback pool.submit(invoke) │
│                 └── otherwise        → fallback pool.submit(invoke) │
└──────────────────────────────────────────────────────────────────────┘

Invalid expressions (``croniter.is_valid`` fails, or the timezone is
unknown) are logged as ``ScheduleInvalidError`` and the workflow stays
un-armed until its trigger changes. A timer that was late by more than
one period fires once, not once per missed period.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from relay.core.errors import QueueUnavailableError, ScheduleInvalidError
from relay.core.logging import get_logger
from relay.core.timestamps import to_iso8601, utc_now
from relay.execution.trigger import WorkflowTrigger
from relay.scheduling.protocol import SchedulerBackend
from relay.scheduling.thread_backend import ThreadSchedulerBackend
from relay.storage.runs import RunRepository
from relay.storage.workflows import WorkflowRepository
from relay.workflows.models import InvocationType, Workflow

logger = get_logger(__name__)


def next_fire_time(expression: str, after: datetime, timezone: str = "UTC") -> datetime:
    """Next time ``expression`` fires strictly after ``after`` (returned in UTC)."""
    tz = ZoneInfo(timezone)
    following = croniter(expression, after.astimezone(tz)).get_next(datetime)
    return following.astimezone(ZoneInfo("UTC"))


def validate_schedule(workflow_id: str, expression: str | None, timezone: str = "UTC") -> None:
    """Raise ``ScheduleInvalidError`` unless the expression and timezone are usable."""
    if not expression or not isinstance(expression, str):
        raise ScheduleInvalidError(workflow_id, expression, "cron trigger has no schedule")
    if not croniter.is_valid(expression):
        raise ScheduleInvalidError(workflow_id, expression, "not a valid cron expression")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ScheduleInvalidError(workflow_id, expression, f"unknown timezone {timezone!r}", cause=exc) from exc


@dataclass
class ArmedSchedule:
    workflow_id: str
    owner_id: str
    expression: str
    timezone: str
    next_fire_at: datetime
    fire_count: int = 0
    last_fired_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "userId": self.owner_id,
            "cronPattern": self.expression,
            "timezone": self.timezone,
            "nextFireAt": to_iso8601(self.next_fire_at),
            "lastFiredAt": to_iso8601(self.last_fired_at),
            "fireCount": self.fire_count,
        }


@dataclass
class SchedulerStats:
    tick_count: int = 0
    sync_count: int = 0
    fired: int = 0
    fire_failures: int = 0
    reaped_runs: int = 0
    last_sync: datetime | None = None
    last_error: str | None = None


@dataclass
class SyncResult:
    armed: list[str] = field(default_factory=list)
    rearmed: list[str] = field(default_factory=list)
    disarmed: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    reaped: list[str] = field(default_factory=list)


class WorkflowScheduler:
    """Arms cron timers for active workflows and fires them through the trigger.

    Example:
        >>> scheduler = WorkflowScheduler(workflows, trigger, runs=runs)
        >>> scheduler.initialize()      # first sync + backend start
        >>> scheduler.refresh()         # after a workflow's trigger changed
        >>> scheduler.status()
        >>> scheduler.shutdown()
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        trigger: WorkflowTrigger,
        backend: SchedulerBackend | None = None,
        *,
        sync_interval: float = 60.0,
        tick_interval: float = 1.0,
        runs: RunRepository | None = None,
        stale_run_after: float = 3600.0,
        fallback_workers: int = 2,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.workflows = workflows
        self.trigger = trigger
        self.backend = backend or ThreadSchedulerBackend()
        self.sync_interval = sync_interval
        self.tick_interval = tick_interval
        self.runs = runs
        self.stale_run_after = stale_run_after
        self.fallback_workers = fallback_workers
        self._clock = clock

        self._armed: dict[str, ArmedSchedule] = {}
        self._rejected: dict[str, tuple[str | None, str, str]] = {}
        self._lock = threading.RLock()
        self._fallback: ThreadPoolExecutor | None = None
        self._last_sync_at: float | None = None
        self._initialized = False
        self.stats = SchedulerStats()

    # === Lifecycle ===

    def initialize(self) -> None:
        """Sync once, then start ticking."""
        if self._initialized:
            logger.warning("scheduler.already_initialized")
            return
        self.refresh()
        self.backend.start(self.tick, self.tick_interval)
        self._initialized = True
        logger.info("scheduler.initialized", scheduled=len(self._armed), backend=self.backend.name)

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop ticking and disarm everything."""
        self.backend.stop()
        with self._lock:
            self._armed.clear()
            self._rejected.clear()
            pool, self._fallback = self._fallback, None
        if pool is not None:
            pool.shutdown(wait=wait)
        self._initialized = False
        logger.info("scheduler.stopped")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # === Sync ===

    def refresh(self) -> SyncResult:
        """Reconcile armed timers with the active cron workflows in storage."""
        result = SyncResult()
        now = self._clock()
        active = {wf.id: wf for wf in self.workflows.list_scheduled_active()}

        with self._lock:
            for workflow_id in list(self._armed):
                if workflow_id not in active:
                    del self._armed[workflow_id]
                    result.disarmed.append(workflow_id)
                    logger.info("schedule.disarmed", workflow_id=workflow_id)
            for workflow_id in list(self._rejected):
                if workflow_id not in active:
                    del self._rejected[workflow_id]

            for workflow in active.values():
                self._sync_one(workflow, now, result)

            self._last_sync_at = time.monotonic()
            self.stats.sync_count += 1
            self.stats.last_sync = now

        if self.runs is not None:
            try:
                result.reaped = self.runs.reap_stale(self.stale_run_after)
                self.stats.reaped_runs += len(result.reaped)
            except Exception as exc:
                self.stats.last_error = str(exc)
                logger.error("scheduler.reap_failed", error=str(exc))

        logger.debug(
            "scheduler.synced",
            scheduled=len(self._armed),
            armed=len(result.armed),
            rearmed=len(result.rearmed),
            disarmed=len(result.disarmed),
            rejected=len(result.rejected),
        )
        return result

    def _sync_one(self, workflow: Workflow, now: datetime, result: SyncResult) -> None:
        expression = workflow.trigger.schedule
        timezone = workflow.trigger.timezone or "UTC"
        existing = self._armed.get(workflow.id)
        if existing and (existing.expression, existing.timezone) == (expression, timezone):
            existing.owner_id = workflow.owner_id
            return
        rejected = self._rejected.get(workflow.id)
        if rejected and rejected[:2] == (expression, timezone):
            return

        try:
            validate_schedule(workflow.id, expression, timezone)
        except ScheduleInvalidError as exc:
            self._armed.pop(workflow.id, None)
            self._rejected[workflow.id] = (expression, timezone, exc.message)
            result.rejected.append(workflow.id)
            logger.error("schedule.invalid", workflow_id=workflow.id, cron_pattern=expression, error=exc.message)
            return

        self._rejected.pop(workflow.id, None)
        self._armed[workflow.id] = ArmedSchedule(
            workflow_id=workflow.id,
            owner_id=workflow.owner_id,
            expression=str(expression),
            timezone=timezone,
            next_fire_at=next_fire_time(str(expression), now, timezone),
        )
        (result.rearmed if existing else result.armed).append(workflow.id)
        logger.info(
            "schedule.rearmed" if existing else "schedule.armed",
            workflow_id=workflow.id,
            cron_pattern=expression,
            timezone=timezone,
            next_fire_at=to_iso8601(self._armed[workflow.id].next_fire_at),
        )

    # === Ticking ===

    def tick(self) -> list[str]:
        """One backend tick: re-sync when due, then fire due timers."""
        self.stats.tick_count += 1
        if self._last_sync_at is None or time.monotonic() - self._last_sync_at >= self.sync_interval:
            try:
                self.refresh()
            except Exception as exc:
                self.stats.last_error = str(exc)
                logger.exception("scheduler.sync_failed", error=str(exc))

        now = self._clock()
        due: list[ArmedSchedule] = []
        with self._lock:
            for schedule in self._armed.values():
                if schedule.next_fire_at <= now:
                    schedule.next_fire_at = next_fire_time(schedule.expression, now, schedule.timezone)
                    due.append(schedule)

        for schedule in due:
            self._fire(schedule.workflow_id, schedule.owner_id, now)
            schedule.fire_count += 1
            schedule.last_fired_at = now
        return [schedule.workflow_id for schedule in due]

    def fire(self, workflow_id: str, scheduled_at: datetime | None = None) -> Future[Any] | None:
        """Fire an armed workflow now, regardless of its timer."""
        with self._lock:
            schedule = self._armed.get(workflow_id)
        if schedule is None:
            raise KeyError(f"Workflow {workflow_id} is not scheduled")
        return self._fire(workflow_id, schedule.owner_id, scheduled_at or self._clock())

    def _fire(self, workflow_id: str, owner_id: str, scheduled_at: datetime) -> Future[Any] | None:
        payload = {"scheduledAt": to_iso8601(scheduled_at)}
        logger.info("schedule.fired", workflow_id=workflow_id, scheduled_at=payload["scheduledAt"])
        self.stats.fired += 1
        if self.trigger.can_queue:
            try:
                result = self.trigger.invoke(
                    workflow_id, owner_id, InvocationType.SCHEDULED, payload, inline_fallback=False
                )
            except QueueUnavailableError:
                return self._fallback_pool().submit(self._run_direct, workflow_id, owner_id, payload)
            except Exception as exc:
                self.stats.fire_failures += 1
                logger.error("schedule.fire_failed", workflow_id=workflow_id, error=str(exc))
                return None
            logger.info("schedule.queued", workflow_id=workflow_id, run_id=result.run_id)
            return None
        return self._fallback_pool().submit(self._run_direct, workflow_id, owner_id, payload)

    def _fallback_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._fallback is None:
                self._fallback = ThreadPoolExecutor(
                    max_workers=self.fallback_workers, thread_name_prefix="relay-scheduled"
                )
            return self._fallback

    def _run_direct(self, workflow_id: str, owner_id: str, payload: dict[str, Any]) -> Any:
        try:
            result = self.trigger.invoke(workflow_id, owner_id, InvocationType.SCHEDULED, payload)
        except Exception as exc:
            self.stats.fire_failures += 1
            logger.exception("schedule.run_crashed", workflow_id=workflow_id, error=str(exc))
            return None
        outcome = result.outcome
        if outcome is not None and not outcome.success:
            logger.error("schedule.run_failed", workflow_id=workflow_id, run_id=result.run_id, error=outcome.error)
        else:
            logger.info("schedule.run_completed", workflow_id=workflow_id, run_id=result.run_id)
        return result

    # === Introspection ===

    def status(self) -> dict[str, Any]:
        with self._lock:
            armed = [schedule.to_dict() for schedule in self._armed.values()]
            rejected = [
                {"workflowId": wf_id, "cronPattern": expr, "timezone": tz, "error": reason}
                for wf_id, (expr, tz, reason) in self._rejected.items()
            ]
        return {
            "initialized": self._initialized,
            "scheduledWorkflows": len(armed),
            "workflows": armed,
            "rejected": rejected,
            "backend": self.backend.health(),
            "stats": {
                "tickCount": self.stats.tick_count,
                "syncCount": self.stats.sync_count,
                "fired": self.stats.fired,
                "fireFailures": self.stats.fire_failures,
                "reapedRuns": self.stats.reaped_runs,
                "lastSync": to_iso8601(self.stats.last_sync),
                "lastError": self.stats.last_error,
            },
        }

    def armed(self, workflow_id: str) -> ArmedSchedule | None:
        with self._lock:
            return self._armed.get(workflow_id)


__all__ = [
    "ArmedSchedule",
    "SchedulerStats",
    "SyncResult",
    "WorkflowScheduler",
    "next_fire_time",
    "validate_schedule",
]
