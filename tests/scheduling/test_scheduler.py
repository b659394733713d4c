"""Tests for cron timers and the workflow scheduler."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from relay.core.errors import QueueUnavailableError, ScheduleInvalidError
from relay.execution.queue import RunQueue
from relay.execution.trigger import WorkflowTrigger
from relay.scheduling import SchedulerBackend, ThreadSchedulerBackend, WorkflowScheduler, next_fire_time, validate_schedule
from relay.workflows.models import InvocationType, Run, RunStatus, WorkflowStatus

ADD_STEP = {"id": "add", "module": "utilities.math.add", "inputs": {"a": 1, "b": 1}}


def _cron(expression, timezone=None):
    config = {"schedule": expression}
    if timezone:
        config["timezone"] = timezone
    return {"type": "cron", "config": config}


class DateClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class ManualBackend:
    """Backend that never ticks by itself."""

    name = "manual"

    def __init__(self):
        self.started_with = None
        self.stopped = False

    def start(self, tick_callback, interval_seconds=1.0):
        self.started_with = (tick_callback, interval_seconds)

    def stop(self):
        self.stopped = True

    def health(self):
        return {"healthy": self.started_with is not None, "backend": self.name, "tick_count": 0, "last_tick": None}


class RejectingQueue:
    """Queue that reports itself running but refuses every submit."""

    is_available = True

    def submit(self, request):
        raise QueueUnavailableError("Run queue is not running")


@pytest.fixture
def date_clock():
    return DateClock(datetime(2024, 1, 1, 8, 59, 30, tzinfo=UTC))


@pytest.fixture
def trigger(executor):
    return WorkflowTrigger(executor)


@pytest.fixture
def scheduler(workflows, trigger, runs, date_clock):
    service = WorkflowScheduler(workflows, trigger, ManualBackend(), runs=runs, clock=date_clock)
    yield service
    service.shutdown()


class TestNextFireTime:
    def test_utc(self):
        after = datetime(2024, 1, 1, 8, 0, tzinfo=UTC)
        assert next_fire_time("0 9 * * *", after) == datetime(2024, 1, 1, 9, 0, tzinfo=UTC)

    def test_strictly_after(self):
        at = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
        assert next_fire_time("0 9 * * *", at) == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)

    def test_timezone(self):
        after = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        fire = next_fire_time("0 9 * * *", after, "America/New_York")
        assert fire == datetime(2024, 1, 1, 14, 0, tzinfo=UTC)


class TestValidateSchedule:
    def test_valid(self):
        validate_schedule("wf-1", "*/5 * * * *", "Europe/Berlin")

    @pytest.mark.parametrize(
        "expression,timezone,reason",
        [
            (None, "UTC", "cron trigger has no schedule"),
            ("every day", "UTC", "not a valid cron expression"),
            ("0 9 * * *", "Mars/Olympus", "unknown timezone"),
        ],
    )
    def test_invalid(self, expression, timezone, reason):
        with pytest.raises(ScheduleInvalidError, match=reason) as excinfo:
            validate_schedule("wf-1", expression, timezone)
        assert excinfo.value.context.workflow_id == "wf-1"


class TestRefresh:
    def test_arms_active_cron_workflows_only(self, scheduler, store_workflow, date_clock):
        store_workflow([ADD_STEP], workflow_id="cron", trigger=_cron("0 9 * * *"))
        store_workflow([ADD_STEP], workflow_id="manual")
        store_workflow([ADD_STEP], workflow_id="draft", trigger=_cron("0 9 * * *"), status=WorkflowStatus.DRAFT)

        result = scheduler.refresh()
        assert result.armed == ["cron"]
        armed = scheduler.armed("cron")
        assert armed.next_fire_at == datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
        assert armed.owner_id == "user-1"

    def test_unchanged_workflow_is_left_alone(self, scheduler, store_workflow):
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
        scheduler.refresh()
        result = scheduler.refresh()
        assert result.armed == result.rearmed == []

    def test_changed_expression_rearms(self, scheduler, store_workflow):
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
        scheduler.refresh()
        store_workflow([ADD_STEP], trigger=_cron("30 9 * * *"))
        result = scheduler.refresh()
        assert result.rearmed == ["wf-1"]
        assert scheduler.armed("wf-1").expression == "30 9 * * *"

    def test_paused_workflow_is_disarmed(self, scheduler, store_workflow, workflows):
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
        scheduler.refresh()
        workflows.update_status("wf-1", WorkflowStatus.PAUSED)
        assert scheduler.refresh().disarmed == ["wf-1"]
        assert scheduler.armed("wf-1") is None

    def test_invalid_expression_rejected_until_changed(self, scheduler, store_workflow):
        store_workflow([ADD_STEP], trigger=_cron("61 * * * *"))
        assert scheduler.refresh().rejected == ["wf-1"]
        assert scheduler.refresh().rejected == []

        rejected = scheduler.status()["rejected"]
        assert rejected[0]["workflowId"] == "wf-1"
        assert rejected[0]["cronPattern"] == "61 * * * *"
        assert "not a valid cron expression" in rejected[0]["error"]

        store_workflow([ADD_STEP], trigger=_cron("0 * * * *"))
        assert scheduler.refresh().armed == ["wf-1"]
        assert scheduler.status()["rejected"] == []

    def test_unloadable_workflow_does_not_block_others(self, scheduler, store_workflow, conn):
        store_workflow([ADD_STEP], workflow_id="wf-bad", trigger=_cron("0 9 * * *"))
        store_workflow([ADD_STEP], workflow_id="wf-good", trigger=_cron("0 9 * * *"))
        conn.execute("UPDATE workflows SET config = ? WHERE id = ?", ("{broken", "wf-bad"))

        assert scheduler.refresh().armed == ["wf-good"]

    def test_reaps_stale_runs(self, scheduler, store_workflow, runs):
        store_workflow([ADD_STEP])
        runs.start(
            Run(
                id="stuck",
                workflow_id="wf-1",
                user_id="user-1",
                trigger_type=InvocationType.SCHEDULED,
                started_at=datetime.now(UTC) - timedelta(hours=3),
            )
        )
        assert scheduler.refresh().reaped == ["stuck"]
        assert runs.get("stuck").status is RunStatus.ERROR
        assert scheduler.stats.reaped_runs == 1


class TestTick:
    def test_fires_due_timer_once(self, scheduler, store_workflow, date_clock, runs):
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
        scheduler.refresh()

        assert scheduler.tick() == []
        date_clock.advance(seconds=30)
        assert scheduler.tick() == ["wf-1"]
        assert scheduler.tick() == []

        armed = scheduler.armed("wf-1")
        assert armed.fire_count == 1
        assert armed.next_fire_at == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)

    def test_late_timer_fires_once(self, scheduler, store_workflow, date_clock):
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
        scheduler.refresh()
        date_clock.advance(days=3)
        assert scheduler.tick() == ["wf-1"]
        assert scheduler.tick() == []
        assert scheduler.armed("wf-1").next_fire_at == datetime(2024, 1, 4, 9, 0, tzinfo=UTC)

    def test_first_tick_syncs(self, scheduler, store_workflow):
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
        scheduler.tick()
        assert scheduler.armed("wf-1") is not None
        assert scheduler.stats.sync_count == 1


class TestFiring:
    def test_fallback_pool_without_queue(self, scheduler, store_workflow, runs, date_clock):
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
        scheduler.refresh()

        future = scheduler.fire("wf-1")
        result = future.result(timeout=5.0)
        assert result.queued is False
        assert result.outcome.success

        run = runs.get(result.run_id)
        assert run.trigger_type is InvocationType.SCHEDULED
        assert run.user_id == "user-1"
        assert run.trigger_payload == {"scheduledAt": date_clock.now.isoformat()}

    def test_queued_when_queue_running(self, workflows, executor, conn, runs, store_workflow, date_clock):
        queue = RunQueue(conn, executor, max_concurrent=1, poll_interval=0.02)
        queue.initialize()
        service = WorkflowScheduler(workflows, WorkflowTrigger(executor, queue), ManualBackend(), clock=date_clock)
        try:
            store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
            service.refresh()
            assert service.fire("wf-1") is None
            assert queue.wait_idle(timeout=5.0)
            assert [r.status for r in runs.list_for_workflow("wf-1")] == [RunStatus.SUCCESS]
        finally:
            service.shutdown()
            queue.shutdown()

    def test_refused_submit_runs_on_fallback_pool(self, workflows, executor, runs, store_workflow, date_clock):
        fired_on = []
        original = executor.execute

        def recording_execute(*args, **kwargs):
            fired_on.append(threading.current_thread().name)
            return original(*args, **kwargs)

        executor.execute = recording_execute
        service = WorkflowScheduler(
            workflows, WorkflowTrigger(executor, RejectingQueue()), ManualBackend(), clock=date_clock
        )
        try:
            store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))
            service.refresh()
            future = service.fire("wf-1")
            assert future is not None
            result = future.result(timeout=5.0)
            assert result.queued is False
            assert result.outcome.success
            assert fired_on and all(name.startswith("relay-scheduled") for name in fired_on)
            assert service.stats.fire_failures == 0
            assert [r.status for r in runs.list_for_workflow("wf-1")] == [RunStatus.SUCCESS]
        finally:
            service.shutdown()

    def test_fire_unscheduled(self, scheduler):
        with pytest.raises(KeyError):
            scheduler.fire("nope")


class TestLifecycle:
    def test_initialize_and_shutdown(self, workflows, trigger, store_workflow, date_clock):
        backend = ManualBackend()
        service = WorkflowScheduler(workflows, trigger, backend, tick_interval=0.5, clock=date_clock)
        store_workflow([ADD_STEP], trigger=_cron("0 9 * * *"))

        service.initialize()
        assert backend.started_with == (service.tick, 0.5)
        status = service.status()
        assert status["initialized"] is True
        assert status["scheduledWorkflows"] == 1
        assert status["workflows"][0]["cronPattern"] == "0 9 * * *"
        assert status["backend"]["backend"] == "manual"

        service.shutdown()
        assert backend.stopped
        assert service.status()["scheduledWorkflows"] == 0
        assert not service.is_initialized

    def test_manual_backend_satisfies_protocol(self):
        assert isinstance(ManualBackend(), SchedulerBackend)
        assert isinstance(ThreadSchedulerBackend(), SchedulerBackend)


class TestThreadBackend:
    def test_ticks_until_stopped(self):
        ticked = threading.Event()
        backend = ThreadSchedulerBackend()
        backend.start(ticked.set, interval_seconds=0.01)
        try:
            assert ticked.wait(2.0)
            assert backend.is_running
        finally:
            backend.stop()
        health = backend.health()
        assert health["backend"] == "thread"
        assert health["tick_count"] >= 1
        assert health["healthy"] is False

    def test_failing_tick_keeps_looping(self):
        calls = []
        done = threading.Event()

        def tick():
            calls.append(1)
            if len(calls) >= 3:
                done.set()
            raise RuntimeError("tick failed")

        backend = ThreadSchedulerBackend()
        backend.start(tick, interval_seconds=0.01)
        try:
            assert done.wait(2.0)
        finally:
            backend.stop()

    def test_async_tick(self):
        ticked = threading.Event()

        async def tick():
            ticked.set()

        backend = ThreadSchedulerBackend()
        backend.start(tick, interval_seconds=0.01)
        try:
            assert ticked.wait(2.0)
        finally:
            backend.stop()
