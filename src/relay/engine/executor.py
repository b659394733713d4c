"""
Workflow Executor - the lifecycle of one run.

Architecture:
    ::

        execute(workflow_id, user_id, trigger_type, payload, on_progress)
          │
          ├─ load workflow ───────────── missing or malformed → run_failed, outcome(error)
          ├─ tenant active? ──────────── no      → run_failed, outcome(error)
          ├─ recorder.record_started(run)
          ├─ emit run_started
          ├─ credentials.load(user_id) → BindingEnvironment.create(...)
          ├─ StepInterpreter.run(steps, env)
          │     ├─ ok    → record_finished(success), emit run_completed
          │     └─ error → record_finished(error, error_step), emit run_failed
          └─ RunOutcome {success, output | error, errorStep}

    A workflow that cannot be loaded (missing, or a stored definition that
    no longer parses) or whose tenant is inactive never gets a run row.
    The workflow's own status is not checked, so drafts can be run by
    hand. Everything after ``record_started`` always ends in exactly one
    terminal write and one terminal event.

    ``execute`` does not raise for run failures. Storage problems are the
    recorder's to retry; observer problems are the emitter's to detach.

Tags:
    executor, lifecycle, run, relay-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any

from relay.capabilities.dispatcher import ModuleDispatcher
from relay.core.errors import (
    StepExecutionError,
    TenantInactiveError,
    WorkflowError,
    WorkflowNotFoundError,
    error_message,
)
from relay.core.logging import LogContext, get_logger
from relay.core.timestamps import generate_ulid, utc_now
from relay.engine.environment import BindingEnvironment
from relay.engine.events import (
    ProgressEmitter,
    ProgressSink,
    RunCompleted,
    RunFailed,
    RunStarted,
)
from relay.engine.interpreter import StepInterpreter
from relay.storage.credentials import CredentialStore
from relay.storage.recorder import RunRecorder
from relay.storage.workflows import WorkflowRepository
from relay.workflows.models import InvocationType, Run, RunOutcome, RunStatus

logger = get_logger(__name__)


class WorkflowExecutor:
    """Runs a stored workflow end to end and records the result."""

    def __init__(
        self,
        workflows: WorkflowRepository,
        recorder: RunRecorder,
        dispatcher: ModuleDispatcher,
        credentials: CredentialStore | None = None,
        *,
        strict_variables: bool = False,
        sinks: Iterable[ProgressSink] = (),
    ):
        self.workflows = workflows
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.credentials = credentials
        self.strict_variables = strict_variables
        self.sinks = tuple(sinks)

    def execute(
        self,
        workflow_id: str,
        user_id: str,
        trigger_type: str | InvocationType,
        trigger_payload: Mapping[str, Any] | None = None,
        *,
        on_progress: ProgressSink | None = None,
        run_id: str | None = None,
    ) -> RunOutcome:
        run_id = run_id or generate_ulid()
        invocation = InvocationType.parse(trigger_type)
        emitter = ProgressEmitter(*self.sinks, on_progress)

        with LogContext(workflow_id=workflow_id, run_id=run_id):
            try:
                workflow = self.workflows.get(workflow_id)
            except WorkflowError as exc:
                return self._refuse(emitter, run_id, exc)
            if workflow is None:
                return self._refuse(emitter, run_id, WorkflowNotFoundError(workflow_id))
            if not self.workflows.is_tenant_active(workflow.tenant_id):
                return self._refuse(emitter, run_id, TenantInactiveError(workflow.tenant_id or ""))

            run = Run(
                id=run_id,
                workflow_id=workflow.id,
                user_id=user_id,
                tenant_id=workflow.tenant_id,
                trigger_type=invocation,
                trigger_payload=dict(trigger_payload) if trigger_payload else None,
            )
            started = time.monotonic()
            self.recorder.record_started(run)
            logger.info(
                "run.started",
                trigger_type=invocation.value,
                user_id=user_id,
                step_count=len(workflow.steps),
            )
            emitter.emit(RunStarted(workflow_id=workflow.id, run_id=run_id, total_steps=len(workflow.steps)))

            credentials = self.credentials.load(user_id) if self.credentials is not None else {}
            env = BindingEnvironment.create(
                user_id=user_id,
                trigger_payload=trigger_payload,
                credentials=credentials,
                tenant_id=workflow.tenant_id,
                workflow_id=workflow.id,
                run_id=run_id,
            )
            interpreter = StepInterpreter(self.dispatcher, emitter, strict_variables=self.strict_variables)

            try:
                output = interpreter.run(workflow.steps, env)
            except Exception as exc:
                error_step = exc.step_id if isinstance(exc, StepExecutionError) else None
                message = error_message(exc)
                duration_ms = int((time.monotonic() - started) * 1000)
                self.recorder.record_finished(
                    run_id,
                    RunStatus.ERROR,
                    completed_at=utc_now(),
                    duration_ms=duration_ms,
                    error=message,
                    error_step=error_step,
                )
                logger.error(
                    "run.failed",
                    error=message,
                    error_step=error_step,
                    duration_ms=duration_ms,
                )
                emitter.emit(RunFailed(run_id=run_id, error=message, error_step=error_step))
                return RunOutcome(run_id=run_id, success=False, error=message, error_step=error_step)

            duration_ms = int((time.monotonic() - started) * 1000)
            self.recorder.record_finished(
                run_id,
                RunStatus.SUCCESS,
                completed_at=utc_now(),
                duration_ms=duration_ms,
                output=output,
            )
            logger.info("run.completed", duration_ms=duration_ms)
            emitter.emit(RunCompleted(run_id=run_id, duration_ms=duration_ms, output=output))
            return RunOutcome(run_id=run_id, success=True, output=output)

    def _refuse(self, emitter: ProgressEmitter, run_id: str, error: Exception) -> RunOutcome:
        message = error_message(error)
        logger.warning("run.refused", error=message, error_type=type(error).__name__)
        emitter.emit(RunFailed(run_id=run_id, error=message))
        return RunOutcome(run_id=run_id, success=False, error=message)


__all__ = ["WorkflowExecutor"]
