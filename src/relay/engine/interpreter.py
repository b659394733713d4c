"""
Step Interpreter - executes a step tree against a binding environment.

Steps run depth-first, left to right, one at a time. Each run has its
own interpreter call and its own environment; nothing here is shared
between runs except the dispatcher (which is thread-safe).

Architecture:
    ::

        run(steps, env)
          │
          ├─ ActionStep     resolve inputs → dispatch(module) → bind outputAs
          ├─ ConditionStep  evaluate predicate → run(then) | run(else)
          └─ LoopStep       resolve source → for item: scoped(item) → run(body)

    Every step (nested ones included) is bracketed by ``step_started`` and
    ``step_completed`` / ``step_failed`` events. The first failure stops
    the walk: the innermost failing step id travels up inside a
    ``StepExecutionError`` and no sibling or outer step runs after it.

Output:
    The run output is the output of the last top-level step that ran.
    An action's output is what the capability returned; a condition's is
    the output of the last step in the branch it took; a loop's is the
    list of per-iteration results.

Tags:
    interpreter, steps, control-flow, condition, loop, relay-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from relay.capabilities.dispatcher import ModuleDispatcher
from relay.core.errors import StepExecutionError, WorkflowError, error_message
from relay.core.logging import get_logger
from relay.engine.conditions import evaluate_condition
from relay.engine.environment import BindingEnvironment
from relay.engine.events import ProgressEmitter, StepCompleted, StepFailed, StepStarted
from relay.engine.resolver import exact_placeholder, resolve_inputs, resolve_value
from relay.workflows.models import ActionStep, ConditionStep, LoopStep, Step

logger = get_logger(__name__)


class StepInterpreter:
    """Walks a step tree, dispatching actions and reporting progress."""

    def __init__(
        self,
        dispatcher: ModuleDispatcher,
        emitter: ProgressEmitter | None = None,
        *,
        strict_variables: bool = False,
    ):
        self.dispatcher = dispatcher
        self.emitter = emitter or ProgressEmitter()
        self.strict_variables = strict_variables

    def run(self, steps: Sequence[Step], env: BindingEnvironment) -> Any:
        """Execute ``steps`` in order; returns the last step's output.

        Raises:
            StepExecutionError: carrying the id of the innermost failing step
        """
        return self._run_block(steps, env, parent_id=None)

    # -- blocks -----------------------------------------------------------

    def _run_block(self, steps: Iterable[Step], env: BindingEnvironment, parent_id: str | None) -> Any:
        output: Any = None
        for index, step in enumerate(steps):
            output = self._run_step(step, index, env, parent_id)
        return output

    def _run_step(self, step: Step, index: int, env: BindingEnvironment, parent_id: str | None) -> Any:
        module = step.module if isinstance(step, ActionStep) else step.kind
        self.emitter.emit(StepStarted(step_id=step.id, index=index, module=module, parent_id=parent_id))
        logger.debug("step.started", step_id=step.id, kind=step.kind, module=module, parent_id=parent_id)
        started = time.monotonic()

        try:
            if isinstance(step, ActionStep):
                output = self._run_action(step, env)
            elif isinstance(step, ConditionStep):
                output = self._run_condition(step, env)
            elif isinstance(step, LoopStep):
                output = self._run_loop(step, env)
            else:
                raise WorkflowError(f"Unknown step type: {type(step).__name__}")
        except StepExecutionError as exc:
            # Already reported by the innermost step; outer steps fail too
            # but keep the innermost id and message.
            if exc.step_id != step.id:
                self.emitter.emit(StepFailed(step_id=step.id, index=index, error=exc.message))
            raise
        except Exception as exc:
            message = error_message(exc)
            logger.error(
                "step.failed",
                step_id=step.id,
                module=module,
                error=message,
                error_type=type(exc).__name__,
            )
            self.emitter.emit(StepFailed(step_id=step.id, index=index, error=message))
            raise StepExecutionError(step.id, message, cause=exc) from exc

        duration_ms = int((time.monotonic() - started) * 1000)
        self.emitter.emit(StepCompleted(step_id=step.id, index=index, duration_ms=duration_ms, output=output))
        logger.debug("step.completed", step_id=step.id, duration_ms=duration_ms)
        return output

    # -- step kinds -------------------------------------------------------

    def _run_action(self, step: ActionStep, env: BindingEnvironment) -> Any:
        inputs = resolve_inputs(step.inputs, env, strict=self.strict_variables)
        output = self.dispatcher.dispatch(step.module, inputs)
        if step.output_as:
            env.bind(step.output_as, output)
        return output

    def _run_condition(self, step: ConditionStep, env: BindingEnvironment) -> Any:
        taken = evaluate_condition(step.condition, env)
        branch = step.then if taken else step.else_
        logger.debug("step.branch", step_id=step.id, taken="then" if taken else "else", steps=len(branch))
        return self._run_block(branch, env, parent_id=step.id)

    def _run_loop(self, step: LoopStep, env: BindingEnvironment) -> list[Any]:
        items = self._loop_items(step, env)
        logger.debug("step.loop", step_id=step.id, iterations=len(items))
        results: list[Any] = []
        for position, item in enumerate(items):
            with env.scoped(**{step.item_as: item, f"{step.item_as}_index": position}):
                results.append(self._run_block(step.steps, env, parent_id=step.id))
        if step.output_as:
            env.bind(step.output_as, results)
        return results

    def _loop_items(self, step: LoopStep, env: BindingEnvironment) -> list[Any]:
        source = step.source
        if exact_placeholder(source) is not None or isinstance(source, (list, tuple, Mapping)):
            source = resolve_value(source, env, strict=self.strict_variables)
        if source is None:
            return []
        if isinstance(source, Mapping):
            return list(source.values())
        if isinstance(source, (list, tuple)):
            return list(source)
        raise WorkflowError(f"Loop source must be a list, got {type(source).__name__}")


__all__ = ["StepInterpreter"]
