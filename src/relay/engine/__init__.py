"""Execution engine: bindings, placeholders, conditions, interpreter, run lifecycle."""

from relay.engine.conditions import evaluate_condition
from relay.engine.environment import BindingEnvironment
from relay.engine.events import (
    LoggingSink,
    ProgressEmitter,
    ProgressEvent,
    ProgressStream,
    RecordingSink,
)
from relay.engine.executor import WorkflowExecutor
from relay.engine.interpreter import StepInterpreter
from relay.engine.resolver import lookup_path, resolve_inputs, resolve_value

__all__ = [
    "evaluate_condition",
    "BindingEnvironment",
    "LoggingSink",
    "ProgressEmitter",
    "ProgressEvent",
    "ProgressStream",
    "RecordingSink",
    "WorkflowExecutor",
    "StepInterpreter",
    "lookup_path",
    "resolve_inputs",
    "resolve_value",
]
