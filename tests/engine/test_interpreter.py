"""Tests for step-tree interpretation."""

import pytest

from relay.core.errors import StepExecutionError, UnresolvedVariableError
from relay.engine.environment import BindingEnvironment
from relay.engine.events import ProgressEmitter, RecordingSink
from relay.engine.interpreter import StepInterpreter
from relay.workflows.models import parse_steps


@pytest.fixture
def calls(registry):
    """Register capabilities that record their invocations."""
    seen: list[tuple[str, object]] = []

    def echo(value):
        seen.append(("echo", value))
        return value

    def boom(reason):
        seen.append(("boom", reason))
        raise ValueError(reason)

    registry.register("utilities.test.echo", echo)
    registry.register("utilities.test.boom", boom)
    return seen


def _run(dispatcher, steps, *, payload=None, sink=None, strict=False):
    env = BindingEnvironment.create(user_id="u1", trigger_payload=payload)
    interpreter = StepInterpreter(dispatcher, ProgressEmitter(sink), strict_variables=strict)
    return interpreter.run(parse_steps(steps), env), env


class TestSequentialActions:
    def test_output_bound_and_visible_to_later_steps(self, dispatcher):
        steps = [
            {"id": "s1", "module": "utilities.math.add", "inputs": {"a": 2, "b": 3}, "outputAs": "sum"},
            {"id": "s2", "module": "utilities.math.multiply", "inputs": {"a": "{{sum}}", "b": 10}, "outputAs": "total"},
        ]
        output, env = _run(dispatcher, steps)
        assert output == 50
        assert env["sum"] == 5
        assert env["total"] == 50

    def test_trigger_payload_reaches_inputs(self, dispatcher):
        steps = [{"id": "s1", "module": "utilities.text.uppercase", "inputs": {"text": "{{trigger.name}}"}}]
        output, _ = _run(dispatcher, steps, payload={"name": "ada"})
        assert output == "ADA"

    def test_empty_workflow_outputs_none(self, dispatcher):
        output, _ = _run(dispatcher, [])
        assert output is None

    def test_strict_mode_fails_step_on_missing_variable(self, dispatcher):
        steps = [{"id": "s1", "module": "utilities.text.uppercase", "inputs": {"text": "{{trigger.nope}}"}}]
        with pytest.raises(StepExecutionError) as excinfo:
            _run(dispatcher, steps, strict=True)
        assert excinfo.value.step_id == "s1"
        assert isinstance(excinfo.value.__cause__, UnresolvedVariableError)

    def test_reference_to_later_output_is_empty(self, dispatcher, calls):
        steps = [
            {"id": "b", "module": "utilities.test.echo", "inputs": {"value": "{{x}}"}, "outputAs": "early"},
            {"id": "c", "module": "utilities.test.echo", "inputs": {"value": "x={{x}}"}, "outputAs": "embedded"},
            {"id": "a", "module": "utilities.test.echo", "inputs": {"value": 7}, "outputAs": "x"},
        ]
        output, env = _run(dispatcher, steps)
        assert calls == [("echo", None), ("echo", "x="), ("echo", 7)]
        assert env["early"] is None
        assert output == 7

    def test_reference_to_later_output_fails_when_strict(self, dispatcher, calls):
        steps = [
            {"id": "b", "module": "utilities.test.echo", "inputs": {"value": "{{x}}"}},
            {"id": "a", "module": "utilities.test.echo", "inputs": {"value": 7}, "outputAs": "x"},
        ]
        with pytest.raises(StepExecutionError) as excinfo:
            _run(dispatcher, steps, strict=True)
        assert excinfo.value.step_id == "b"
        assert isinstance(excinfo.value.__cause__, UnresolvedVariableError)
        assert calls == []


class TestConditions:
    STEPS = [
        {
            "id": "check",
            "type": "condition",
            "condition": "{{trigger.x}} > 10",
            "then": [{"id": "big", "module": "utilities.test.echo", "inputs": {"value": "big"}}],
            "else": [{"id": "small", "module": "utilities.test.echo", "inputs": {"value": "small"}}],
        }
    ]

    def test_then_branch(self, dispatcher, calls):
        output, _ = _run(dispatcher, self.STEPS, payload={"x": 15})
        assert output == "big"
        assert calls == [("echo", "big")]

    def test_else_branch(self, dispatcher, calls):
        output, _ = _run(dispatcher, self.STEPS, payload={"x": 5})
        assert output == "small"
        assert calls == [("echo", "small")]

    def test_empty_branch_outputs_none(self, dispatcher, calls):
        steps = [{"id": "c", "condition": False, "then": [{"id": "t", "module": "utilities.test.echo", "inputs": {"value": 1}}]}]
        output, _ = _run(dispatcher, steps)
        assert output is None
        assert calls == []


class TestLoops:
    def test_iterates_with_isolated_item(self, dispatcher):
        steps = [
            {
                "id": "each",
                "type": "loop",
                "source": "{{trigger.names}}",
                "itemAs": "name",
                "steps": [{"id": "up", "module": "utilities.text.uppercase", "inputs": {"text": "{{name}}"}}],
                "outputAs": "upper",
            }
        ]
        output, env = _run(dispatcher, steps, payload={"names": ["ada", "bob"]})
        assert output == ["ADA", "BOB"]
        assert env["upper"] == ["ADA", "BOB"]
        assert "name" not in env
        assert "name_index" not in env

    def test_index_binding(self, dispatcher, calls):
        steps = [
            {
                "id": "each",
                "loop": {"source": ["a", "b", "c"], "steps": [
                    {"id": "e", "module": "utilities.test.echo", "inputs": {"value": "{{item_index}}:{{item}}"}}
                ]},
            }
        ]
        output, _ = _run(dispatcher, steps)
        assert output == ["0:a", "1:b", "2:c"]

    def test_missing_source_runs_nothing(self, dispatcher, calls):
        steps = [{"id": "each", "source": "{{trigger.none}}", "steps": [
            {"id": "e", "module": "utilities.test.echo", "inputs": {"value": 1}}
        ]}]
        output, _ = _run(dispatcher, steps)
        assert output == []
        assert calls == []

    def test_non_list_source_fails(self, dispatcher):
        steps = [{"id": "each", "source": "{{trigger.n}}", "steps": []}]
        with pytest.raises(StepExecutionError, match="Loop source must be a list") as excinfo:
            _run(dispatcher, steps, payload={"n": 3})
        assert excinfo.value.step_id == "each"


class TestFailures:
    def test_failure_stops_the_walk(self, dispatcher, calls):
        steps = [
            {"id": "s1", "module": "utilities.test.echo", "inputs": {"value": "first"}},
            {"id": "s2", "module": "utilities.test.boom", "inputs": {"reason": "kaboom"}},
            {"id": "s3", "module": "utilities.test.echo", "inputs": {"value": "never"}},
        ]
        with pytest.raises(StepExecutionError) as excinfo:
            _run(dispatcher, steps)
        assert excinfo.value.step_id == "s2"
        assert excinfo.value.message == "Failed to execute utilities.test.boom: kaboom"
        assert ("echo", "never") not in calls

    def test_innermost_step_id_is_reported(self, dispatcher, calls):
        sink = RecordingSink()
        steps = [
            {"id": "outer", "condition": True, "then": [
                {"id": "inner", "module": "utilities.test.boom", "inputs": {"reason": "nested"}}
            ]},
            {"id": "after", "module": "utilities.test.echo", "inputs": {"value": "never"}},
        ]
        with pytest.raises(StepExecutionError) as excinfo:
            _run(dispatcher, steps, sink=sink)
        assert excinfo.value.step_id == "inner"
        failed = [event.step_id for event in sink.of_type("step_failed")]
        assert failed == ["inner", "outer"]
        assert calls == [("boom", "nested")]

    def test_unknown_capability_fails_step(self, dispatcher):
        steps = [{"id": "s1", "module": "utilities.nothing.here", "inputs": {}}]
        with pytest.raises(StepExecutionError, match="utilities.nothing.here") as excinfo:
            _run(dispatcher, steps)
        assert excinfo.value.step_id == "s1"


class TestProgressEvents:
    def test_nested_steps_carry_parent_id(self, dispatcher, calls):
        sink = RecordingSink()
        steps = [
            {"id": "c", "condition": True, "then": [
                {"id": "t", "module": "utilities.test.echo", "inputs": {"value": 1}}
            ]},
        ]
        _run(dispatcher, steps, sink=sink)
        assert sink.types == ["step_started", "step_started", "step_completed", "step_completed"]
        started = sink.of_type("step_started")
        assert started[0].to_dict() == {"type": "step_started", "stepId": "c", "index": 0, "module": "condition"}
        assert started[1].to_dict()["parentId"] == "c"
        completed = sink.of_type("step_completed")
        assert completed[0].step_id == "t"
        assert completed[0].output == 1
