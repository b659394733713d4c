"""
Lazy-initialised dependency container.

:class:`RelayContainer` wires the storage layer, capability registry,
executor, run queue, trigger and scheduler from one :class:`RelaySettings`
and creates each component on first access.

Usage::

    from relay.container import RelayContainer

    container = RelayContainer()
    outcome = container.trigger.invoke("wf-1", "user-1")

    # As a context manager for orderly shutdown:
    with RelayContainer(RelaySettings(database_path=":memory:")) as c:
        c.queue.initialize()
        c.scheduler.initialize()

Shutdown order is the reverse of the data flow: scheduler (no new fires),
queue (drain in-flight runs), recorder (flush parked writes), connection.
"""

from __future__ import annotations

from relay.capabilities.dispatcher import ModuleDispatcher
from relay.capabilities.guards import CapabilityGuards, GuardPolicy
from relay.capabilities.registry import CapabilityRegistry
from relay.core.logging import get_logger
from relay.core.protocols import Connection
from relay.core.schema import create_schema
from relay.core.settings import RelaySettings, get_settings
from relay.core.sqlite_conn import SqliteConnection
from relay.engine.events import LoggingSink
from relay.engine.executor import WorkflowExecutor
from relay.execution.queue import RunQueue
from relay.execution.trigger import WorkflowTrigger
from relay.scheduling.service import WorkflowScheduler
from relay.storage import CredentialStore, RunRecorder, RunRepository, WorkflowRepository

logger = get_logger(__name__)


class RelayContainer:
    """Lazy-initialised dependency container.

    Components are created on first property access and disposed via
    :meth:`close` (or the context-manager protocol). Passing ``conn``
    shares an existing connection; the container then leaves it open.
    """

    def __init__(self, settings: RelaySettings | None = None, conn: Connection | None = None) -> None:
        self._settings = settings
        self._conn: Connection | None = conn
        self._owns_conn = conn is None
        self._schema_ready = False
        self._workflows: WorkflowRepository | None = None
        self._runs: RunRepository | None = None
        self._credentials: CredentialStore | None = None
        self._recorder: RunRecorder | None = None
        self._registry: CapabilityRegistry | None = None
        self._guards: CapabilityGuards | None = None
        self._dispatcher: ModuleDispatcher | None = None
        self._executor: WorkflowExecutor | None = None
        self._queue: RunQueue | None = None
        self._trigger: WorkflowTrigger | None = None
        self._scheduler: WorkflowScheduler | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> RelaySettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def conn(self) -> Connection:
        """SQLite connection with the schema applied."""
        if self._conn is None:
            self._conn = SqliteConnection(self.settings.database_path)
        if not self._schema_ready:
            create_schema(self._conn)
            self._schema_ready = True
        return self._conn

    @property
    def workflows(self) -> WorkflowRepository:
        if self._workflows is None:
            self._workflows = WorkflowRepository(self.conn)
        return self._workflows

    @property
    def runs(self) -> RunRepository:
        if self._runs is None:
            self._runs = RunRepository(self.conn)
        return self._runs

    @property
    def credentials(self) -> CredentialStore:
        if self._credentials is None:
            self._credentials = CredentialStore(self.conn)
        return self._credentials

    @property
    def recorder(self) -> RunRecorder:
        """Run recorder; its retry thread starts with the container."""
        if self._recorder is None:
            self._recorder = RunRecorder(
                self.runs,
                max_attempts=self.settings.recorder_max_attempts,
                backlog=self.settings.recorder_backlog,
            )
            self._recorder.start()
        return self._recorder

    @property
    def registry(self) -> CapabilityRegistry:
        if self._registry is None:
            self._registry = CapabilityRegistry(
                category_map=self.settings.category_map,
                packages=self.settings.capability_packages,
            )
        return self._registry

    @property
    def guards(self) -> CapabilityGuards:
        if self._guards is None:
            self._guards = CapabilityGuards(GuardPolicy.from_settings(self.settings))
        return self._guards

    @property
    def dispatcher(self) -> ModuleDispatcher:
        if self._dispatcher is None:
            self._dispatcher = ModuleDispatcher(self.registry, self.guards)
        return self._dispatcher

    @property
    def executor(self) -> WorkflowExecutor:
        if self._executor is None:
            self._executor = WorkflowExecutor(
                self.workflows,
                self.recorder,
                self.dispatcher,
                self.credentials,
                strict_variables=self.settings.strict_variables,
                sinks=(LoggingSink(),),
            )
        return self._executor

    @property
    def queue(self) -> RunQueue:
        """Run queue. Not started until ``queue.initialize()``."""
        if self._queue is None:
            self._queue = RunQueue(
                self.conn,
                self.executor,
                max_concurrent=self.settings.max_concurrent_runs,
                max_per_tenant=self.settings.max_concurrent_runs_per_tenant,
                poll_interval=self.settings.queue_poll_interval,
                batch_size=self.settings.queue_batch_size,
            )
        return self._queue

    @property
    def trigger(self) -> WorkflowTrigger:
        if self._trigger is None:
            self._trigger = WorkflowTrigger(self.executor, self.queue)
        return self._trigger

    @property
    def scheduler(self) -> WorkflowScheduler:
        """Workflow scheduler. Not started until ``scheduler.initialize()``."""
        if self._scheduler is None:
            self._scheduler = WorkflowScheduler(
                self.workflows,
                self.trigger,
                sync_interval=self.settings.scheduler_sync_interval,
                tick_interval=self.settings.scheduler_tick_interval,
                runs=self.runs,
                stale_run_after=self.settings.stale_run_after,
            )
        return self._scheduler

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Stop background components and release the connection."""
        if self._scheduler is not None:
            self._scheduler.shutdown()
        if self._queue is not None:
            self._queue.shutdown()
        if self._recorder is not None:
            self._recorder.shutdown()
        if self._conn is not None and self._owns_conn:
            self._conn.close()  # type: ignore[attr-defined]
            self._conn = None
            self._schema_ready = False

    def __enter__(self) -> RelayContainer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


# ── Global convenience ───────────────────────────────────────────────────

_global_container: RelayContainer | None = None


def get_container() -> RelayContainer:
    """Get (or create) a module-level :class:`RelayContainer`."""
    global _global_container
    if _global_container is None:
        _global_container = RelayContainer()
    return _global_container


def reset_container() -> None:
    """Close and forget the module-level container."""
    global _global_container
    if _global_container is not None:
        _global_container.close()
    _global_container = None


__all__ = ["RelayContainer", "get_container", "reset_container"]
