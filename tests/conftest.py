"""
Shared pytest fixtures for relay tests.

This module provides:
- In-memory SQLite connection with the relay schema applied
- Repositories, recorder, registry and dispatcher wired to that connection
- A recording progress sink
- Helpers to build and store workflows

Usage:
    Fixtures are auto-discovered by pytest; request them by name.

    def test_something(executor, store_workflow):
        wf = store_workflow([{"id": "s1", "module": "utilities.math.add", ...}])
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
import structlog

from relay.capabilities.dispatcher import ModuleDispatcher
from relay.capabilities.guards import CapabilityGuards, GuardPolicy
from relay.capabilities.registry import CapabilityRegistry
from relay.core.schema import create_schema
from relay.core.settings import clear_settings_cache
from relay.core.sqlite_conn import SqliteConnection
from relay.engine.events import RecordingSink
from relay.engine.executor import WorkflowExecutor
from relay.storage import CredentialStore, RunRecorder, RunRepository, WorkflowRepository
from relay.workflows.models import Trigger, TriggerKind, Workflow, WorkflowStatus, parse_steps


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Settings and structlog config are process-wide; reset them around each test."""
    for key in list(os.environ):
        if key.startswith("RELAY_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
    structlog.reset_defaults()


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def conn() -> Iterator[SqliteConnection]:
    connection = SqliteConnection(":memory:")
    create_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def workflows(conn: SqliteConnection) -> WorkflowRepository:
    return WorkflowRepository(conn)


@pytest.fixture
def runs(conn: SqliteConnection) -> RunRepository:
    return RunRepository(conn)


@pytest.fixture
def credentials(conn: SqliteConnection) -> CredentialStore:
    return CredentialStore(conn)


@pytest.fixture
def recorder(runs: RunRepository) -> RunRecorder:
    return RunRecorder(runs, max_attempts=3, backlog=10)


# =============================================================================
# Capabilities
# =============================================================================


@pytest.fixture
def registry() -> CapabilityRegistry:
    """Fresh registry with the built-in utilities package bound."""
    return CapabilityRegistry(packages={"utilities": "relay.modules.utilities"})


@pytest.fixture
def dispatcher(registry: CapabilityRegistry) -> ModuleDispatcher:
    return ModuleDispatcher(registry, CapabilityGuards(GuardPolicy(timeout=5.0)))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def executor(
    workflows: WorkflowRepository,
    recorder: RunRecorder,
    dispatcher: ModuleDispatcher,
    credentials: CredentialStore,
) -> WorkflowExecutor:
    return WorkflowExecutor(workflows, recorder, dispatcher, credentials)


# =============================================================================
# Workflow helpers
# =============================================================================


def make_workflow(
    steps: list[dict[str, Any]],
    *,
    workflow_id: str = "wf-1",
    owner_id: str = "user-1",
    tenant_id: str | None = None,
    status: WorkflowStatus = WorkflowStatus.ACTIVE,
    trigger: dict[str, Any] | None = None,
) -> Workflow:
    return Workflow(
        id=workflow_id,
        owner_id=owner_id,
        tenant_id=tenant_id,
        name=f"Workflow {workflow_id}",
        status=status,
        trigger=Trigger.from_dict(trigger) if trigger else Trigger(TriggerKind.MANUAL),
        steps=parse_steps(steps),
    )


@pytest.fixture
def store_workflow(workflows: WorkflowRepository) -> Callable[..., Workflow]:
    def _store(steps: list[dict[str, Any]], **kwargs: Any) -> Workflow:
        return workflows.save(make_workflow(steps, **kwargs))

    return _store


@pytest.fixture
def workflow_factory() -> Callable[..., Workflow]:
    """Build (not store) a workflow from a list of step dicts."""
    return make_workflow


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
