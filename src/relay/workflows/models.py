"""
Workflow data model.

A workflow is a trigger plus an ordered tree of steps. Steps are a tagged
variant of three immutable shapes:

    ActionStep     {id, module, inputs, output_as?}
    ConditionStep  {id, condition, then[], else[]}
    LoopStep       {id, source, item_as, steps[], output_as?}

Definitions arrive as JSON documents written by other tools (camelCase
keys, ``outputAs``/``itemAs``), so ``parse_step`` accepts those spellings
and ``to_dict`` produces them. Parsing is strict about structure (unknown
shapes, missing ids, duplicate ids raise ``WorkflowValidationError``) and
lenient about aliases.

Tags:
    workflow, step, dataclass, model, relay-core

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from relay.core.errors import WorkflowValidationError
from relay.core.timestamps import from_iso8601, to_iso8601, utc_now


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class TriggerKind(str, Enum):
    """How a workflow is meant to be started."""

    MANUAL = "manual"
    CRON = "cron"
    WEBHOOK = "webhook"
    EVENT = "event"
    CHAT = "chat"

    @classmethod
    def parse(cls, value: str | None) -> TriggerKind:
        if not value:
            return cls.MANUAL
        key = str(value).strip().lower()
        key = _TRIGGER_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise WorkflowValidationError(f"Unknown trigger type: {value!r}") from None


_TRIGGER_ALIASES = {
    "schedule": "cron",
    "scheduled": "cron",
    "time": "cron",
    "telegram": "event",
    "discord": "event",
    "inbound-event": "event",
    "conversational": "chat",
}


class InvocationType(str, Enum):
    """Why a particular run was started."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    WEBHOOK = "webhook"
    CONVERSATIONAL = "conversational"
    INBOUND_EVENT = "inbound-event"

    @classmethod
    def parse(cls, value: str | InvocationType) -> InvocationType:
        if isinstance(value, InvocationType):
            return value
        key = str(value).strip().lower()
        key = {"cron": "scheduled", "chat": "conversational", "event": "inbound-event"}.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise WorkflowValidationError(f"Unknown invocation type: {value!r}") from None


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


# =============================================================================
# Trigger
# =============================================================================


@dataclass
class Trigger:
    type: TriggerKind = TriggerKind.MANUAL
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def schedule(self) -> str | None:
        """Cron expression of a time-based trigger, if any."""
        value = self.config.get("schedule") or self.config.get("cron")
        return value if value is None else str(value)

    @property
    def timezone(self) -> str | None:
        return self.config.get("timezone") or None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Trigger:
        if not data:
            return cls()
        return cls(type=TriggerKind.parse(data.get("type")), config=dict(data.get("config") or {}))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "config": dict(self.config)}


# =============================================================================
# Steps
# =============================================================================


@dataclass(frozen=True)
class ActionStep:
    id: str
    module: str
    inputs: dict[str, Any] = field(default_factory=dict)
    output_as: str | None = None

    kind = "action"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "module": self.module, "inputs": self.inputs}
        if self.output_as:
            data["outputAs"] = self.output_as
        return data


@dataclass(frozen=True)
class ConditionStep:
    id: str
    condition: Any
    then: tuple[Step, ...] = ()
    else_: tuple[Step, ...] = ()

    kind = "condition"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "condition",
            "condition": self.condition,
            "then": [step.to_dict() for step in self.then],
            "else": [step.to_dict() for step in self.else_],
        }


@dataclass(frozen=True)
class LoopStep:
    id: str
    source: Any
    item_as: str = "item"
    steps: tuple[Step, ...] = ()
    output_as: str | None = None

    kind = "loop"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": "loop",
            "source": self.source,
            "itemAs": self.item_as,
            "steps": [step.to_dict() for step in self.steps],
        }
        if self.output_as:
            data["outputAs"] = self.output_as
        return data


Step = Union[ActionStep, ConditionStep, LoopStep]


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def parse_step(data: Mapping[str, Any]) -> Step:
    """Build a step from its JSON shape.

    ``type`` selects the variant explicitly; without it the variant is
    inferred (``module`` → action, ``condition``/``if`` → condition,
    ``source``/``items``/``forEach``/``loop`` → loop).
    """
    if not isinstance(data, Mapping):
        raise WorkflowValidationError(f"Step must be an object, got {type(data).__name__}")
    step_id = data.get("id")
    if not step_id or not isinstance(step_id, str):
        raise WorkflowValidationError(f"Step is missing an id: {dict(data)!r}")

    kind = data.get("type")
    if kind is None:
        if "module" in data:
            kind = "action"
        elif "condition" in data or "if" in data:
            kind = "condition"
        elif any(k in data for k in ("source", "items", "forEach", "loop")):
            kind = "loop"
    kind = {"if": "condition", "foreach": "loop", "for_each": "loop"}.get(str(kind).lower(), str(kind).lower())

    if kind == "action":
        module = data.get("module")
        if not module or not isinstance(module, str):
            raise WorkflowValidationError(f"Action step {step_id} has no module")
        inputs = data.get("inputs") or {}
        if not isinstance(inputs, Mapping):
            raise WorkflowValidationError(f"Action step {step_id} inputs must be an object")
        return ActionStep(
            id=step_id,
            module=module,
            inputs=dict(inputs),
            output_as=_first(data, "outputAs", "output_as"),
        )

    if kind == "condition":
        condition = _first(data, "condition", "if")
        if condition is None:
            raise WorkflowValidationError(f"Condition step {step_id} has no condition")
        return ConditionStep(
            id=step_id,
            condition=condition,
            then=tuple(parse_steps_list(_first(data, "then", "thenSteps", default=[]), step_id)),
            else_=tuple(parse_steps_list(_first(data, "else", "elseSteps", "else_", default=[]), step_id)),
        )

    if kind == "loop":
        loop = data.get("loop") if isinstance(data.get("loop"), Mapping) else data
        source = _first(loop, "source", "items", "forEach", "over")
        if source is None:
            raise WorkflowValidationError(f"Loop step {step_id} has no source")
        return LoopStep(
            id=step_id,
            source=source,
            item_as=_first(loop, "itemAs", "item_as", "as", default="item"),
            steps=tuple(parse_steps_list(_first(loop, "steps", "do", default=[]), step_id)),
            output_as=_first(data, "outputAs", "output_as"),
        )

    raise WorkflowValidationError(f"Unknown step type {data.get('type')!r} for step {step_id}")


def parse_steps_list(items: Any, parent_id: str | None = None) -> list[Step]:
    if items is None:
        return []
    if not isinstance(items, (list, tuple)):
        where = f" in step {parent_id}" if parent_id else ""
        raise WorkflowValidationError(f"Steps must be a list{where}")
    return [parse_step(item) for item in items]


def iter_steps(steps: Iterable[Step]) -> Iterator[Step]:
    """Depth-first walk over a step tree."""
    for step in steps:
        yield step
        if isinstance(step, ConditionStep):
            yield from iter_steps(step.then)
            yield from iter_steps(step.else_)
        elif isinstance(step, LoopStep):
            yield from iter_steps(step.steps)


def parse_steps(items: Any) -> tuple[Step, ...]:
    """Parse a step list and check that ids are unique across the whole tree."""
    steps = tuple(parse_steps_list(items))
    seen: set[str] = set()
    for step in iter_steps(steps):
        if step.id in seen:
            raise WorkflowValidationError(f"Duplicate step id: {step.id}")
        seen.add(step.id)
    return steps


# =============================================================================
# Workflow / Run
# =============================================================================


def _loads(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (bytes, str)):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise WorkflowValidationError(f"Stored JSON does not parse: {exc}", cause=exc) from exc
    return value


@dataclass
class Workflow:
    id: str
    owner_id: str
    name: str
    trigger: Trigger = field(default_factory=Trigger)
    steps: tuple[Step, ...] = ()
    description: str = ""
    tenant_id: str | None = None
    status: WorkflowStatus = WorkflowStatus.DRAFT
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_run_at: datetime | None = None
    last_run_status: RunStatus | None = None
    last_run_error: str | None = None
    run_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.status is WorkflowStatus.ACTIVE

    @property
    def config(self) -> dict[str, Any]:
        return {"steps": [step.to_dict() for step in self.steps]}

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> Workflow:
        """Build from a ``workflows`` row (JSON columns still encoded)."""
        config = _loads(row["config"], {})
        last_status = row["last_run_status"]
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            description=row["description"] or "",
            status=WorkflowStatus(row["status"]),
            trigger=Trigger.from_dict(_loads(row["trigger"], {})),
            steps=parse_steps(config.get("steps", [])),
            created_at=from_iso8601(row["created_at"]) or utc_now(),
            updated_at=from_iso8601(row["updated_at"]) or utc_now(),
            last_run_at=from_iso8601(row["last_run_at"]),
            last_run_status=RunStatus(last_status) if last_status else None,
            last_run_error=row["last_run_error"],
            run_count=row["run_count"] or 0,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Workflow:
        """Build from a camelCase or snake_case JSON document."""
        workflow_id = data.get("id")
        owner_id = _first(data, "ownerId", "owner_id", "userId", "user_id")
        if not workflow_id or not owner_id:
            raise WorkflowValidationError("Workflow requires an id and an owner")
        config = data.get("config") or {}
        steps = data.get("steps", config.get("steps", []))
        status = data.get("status") or WorkflowStatus.DRAFT.value
        return cls(
            id=workflow_id,
            owner_id=owner_id,
            tenant_id=_first(data, "tenantId", "tenant_id", "organizationId"),
            name=data.get("name") or data["id"],
            description=data.get("description") or "",
            status=WorkflowStatus(status),
            trigger=Trigger.from_dict(data.get("trigger")),
            steps=parse_steps(steps),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "tenantId": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "trigger": self.trigger.to_dict(),
            "config": self.config,
            "createdAt": to_iso8601(self.created_at),
            "lastRunAt": to_iso8601(self.last_run_at),
            "lastRunStatus": self.last_run_status.value if self.last_run_status else None,
            "lastRunError": self.last_run_error,
            "runCount": self.run_count,
        }


@dataclass
class Run:
    id: str
    workflow_id: str
    user_id: str
    trigger_type: InvocationType
    status: RunStatus = RunStatus.RUNNING
    tenant_id: str | None = None
    trigger_payload: dict[str, Any] | None = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    duration_ms: int | None = None
    output: Any = None
    error: str | None = None
    error_step: str | None = None

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> Run:
        return cls(
            id=row["id"],
            workflow_id=row["workflow_id"],
            user_id=row["user_id"],
            tenant_id=row["tenant_id"],
            trigger_type=InvocationType.parse(row["trigger_type"]),
            trigger_payload=_loads(row["trigger_payload"], None),
            status=RunStatus(row["status"]),
            started_at=from_iso8601(row["started_at"]) or utc_now(),
            completed_at=from_iso8601(row["completed_at"]),
            duration_ms=row["duration_ms"],
            output=_loads(row["output"], None),
            error=row["error"],
            error_step=row["error_step"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "userId": self.user_id,
            "tenantId": self.tenant_id,
            "triggerType": self.trigger_type.value,
            "triggerPayload": self.trigger_payload,
            "status": self.status.value,
            "startedAt": to_iso8601(self.started_at),
            "completedAt": to_iso8601(self.completed_at),
            "durationMs": self.duration_ms,
            "output": self.output,
            "error": self.error,
            "errorStep": self.error_step,
        }


@dataclass
class RunOutcome:
    """Final result of one execution, as returned to the trigger caller."""

    run_id: str
    success: bool
    output: Any = None
    error: str | None = None
    error_step: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "runId": self.run_id}
        if self.success:
            data["output"] = self.output
        else:
            data["error"] = self.error
            if self.error_step:
                data["errorStep"] = self.error_step
        return data


__all__ = [
    "WorkflowStatus",
    "TriggerKind",
    "InvocationType",
    "RunStatus",
    "Trigger",
    "ActionStep",
    "ConditionStep",
    "LoopStep",
    "Step",
    "parse_step",
    "parse_steps",
    "iter_steps",
    "Workflow",
    "Run",
    "RunOutcome",
]
