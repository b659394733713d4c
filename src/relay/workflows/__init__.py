"""Workflow definitions: data model and import/export documents."""

from relay.workflows.models import (
    ActionStep,
    ConditionStep,
    InvocationType,
    LoopStep,
    Run,
    RunOutcome,
    RunStatus,
    Step,
    Trigger,
    TriggerKind,
    Workflow,
    WorkflowStatus,
    parse_step,
    parse_steps,
)

__all__ = [
    "ActionStep",
    "ConditionStep",
    "InvocationType",
    "LoopStep",
    "Run",
    "RunOutcome",
    "RunStatus",
    "Step",
    "Trigger",
    "TriggerKind",
    "Workflow",
    "WorkflowStatus",
    "parse_step",
    "parse_steps",
]
