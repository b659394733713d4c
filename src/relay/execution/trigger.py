"""
Trigger entry point - the one way a run is started.

Manual runs, scheduled fires, webhooks, chat messages and inbound events
all call :meth:`WorkflowTrigger.invoke`. It decides *where* the run
executes:

    queue available and no live observer → RunQueue.submit (returns at once)
    otherwise                             → WorkflowExecutor.execute (inline)

A caller that wants to watch progress (``on_progress``) always executes
inline on its own thread, so its sink sees every event of the run.

Tags:
    trigger, entry-point, queue, relay-core
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from relay.core.errors import QueueUnavailableError, WorkflowError
from relay.core.logging import get_logger
from relay.core.timestamps import generate_ulid
from relay.engine.events import ProgressSink
from relay.engine.executor import WorkflowExecutor
from relay.execution.queue import RunQueue, RunRequest
from relay.workflows.models import InvocationType, RunOutcome

logger = get_logger(__name__)


@dataclass
class TriggerResult:
    """What the caller gets back: a queued ticket or a finished outcome."""

    run_id: str
    queued: bool
    outcome: RunOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.outcome is not None:
            return self.outcome.to_dict()
        return {"runId": self.run_id, "queued": True}


class WorkflowTrigger:
    """Routes invocations to the queue or to inline execution."""

    def __init__(self, executor: WorkflowExecutor, queue: RunQueue | None = None):
        self.executor = executor
        self.queue = queue

    @property
    def can_queue(self) -> bool:
        """True when invocations without an observer return without executing."""
        return self.queue is not None and self.queue.is_available

    def invoke(
        self,
        workflow_id: str,
        user_id: str,
        trigger_type: str | InvocationType = InvocationType.MANUAL,
        payload: Mapping[str, Any] | None = None,
        *,
        on_progress: ProgressSink | None = None,
        inline_fallback: bool = True,
    ) -> TriggerResult:
        """Queue or execute one run.

        With ``inline_fallback=False`` a queue that refuses the request raises
        :class:`QueueUnavailableError` instead of running on the calling thread.
        """
        invocation = InvocationType.parse(trigger_type)
        run_id = generate_ulid()

        if on_progress is None and self.can_queue:
            try:
                workflow = self.executor.workflows.get(workflow_id)
            except WorkflowError:
                workflow = None
            request = RunRequest(
                workflow_id=workflow_id,
                user_id=user_id,
                trigger_type=invocation,
                payload=dict(payload) if payload else None,
                tenant_id=workflow.tenant_id if workflow is not None else None,
                run_id=run_id,
            )
            try:
                self.queue.submit(request)
            except QueueUnavailableError:
                logger.warning("trigger.queue_unavailable", workflow_id=workflow_id, run_id=run_id)
                if not inline_fallback:
                    raise
            else:
                return TriggerResult(run_id=run_id, queued=True)

        logger.debug("trigger.inline", workflow_id=workflow_id, run_id=run_id, trigger_type=invocation.value)
        outcome = self.executor.execute(
            workflow_id,
            user_id,
            invocation,
            payload,
            on_progress=on_progress,
            run_id=run_id,
        )
        return TriggerResult(run_id=run_id, queued=False, outcome=outcome)


__all__ = ["TriggerResult", "WorkflowTrigger"]
