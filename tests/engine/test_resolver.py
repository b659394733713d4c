"""Tests for placeholder resolution."""

import pytest

from relay.core.errors import UnresolvedVariableError
from relay.engine.resolver import (
    exact_placeholder,
    has_placeholders,
    lookup_path,
    resolve_inputs,
    resolve_value,
    split_path,
    stringify,
)

BINDINGS = {
    "trigger": {"payload": {"items": [{"title": "first"}, {"title": "second"}]}, "count": 3},
    "user": {"id": "u1", "name": "Ada", "openai": "sk-test"},
    "results": {"first key": 42},
    "flag": False,
    "nothing": None,
}


class TestSplitPath:
    def test_dots_and_indices(self):
        assert split_path("trigger.payload.items[0].title") == ["trigger", "payload", "items", "0", "title"]

    def test_quoted_keys(self):
        assert split_path('results["first key"]') == ["results", "first key"]
        assert split_path("results['first key']") == ["results", "first key"]


class TestLookupPath:
    def test_nested_value(self):
        assert lookup_path(BINDINGS, "trigger.payload.items[1].title") == "second"

    def test_negative_index(self):
        assert lookup_path(BINDINGS, "trigger.payload.items[-1].title") == "second"

    def test_missing_key_is_none(self):
        assert lookup_path(BINDINGS, "user.email") is None

    def test_out_of_range_is_none(self):
        assert lookup_path(BINDINGS, "trigger.payload.items[5]") is None

    def test_scalar_before_end_is_none(self):
        assert lookup_path(BINDINGS, "trigger.count.value") is None

    def test_strict_raises(self):
        with pytest.raises(UnresolvedVariableError, match=r"\{\{user.email\}\}"):
            lookup_path(BINDINGS, "user.email", strict=True)

    def test_strict_allows_explicit_none(self):
        assert lookup_path(BINDINGS, "nothing", strict=True) is None

    def test_attribute_access_on_objects(self):
        class Record:
            title = "from attr"

        assert lookup_path({"rec": Record()}, "rec.title") == "from attr"


class TestResolveValue:
    def test_exact_placeholder_keeps_type(self):
        assert resolve_value("{{trigger.count}}", BINDINGS) == 3
        assert resolve_value("{{flag}}", BINDINGS) is False
        assert resolve_value("{{trigger.payload.items}}", BINDINGS) == BINDINGS["trigger"]["payload"]["items"]

    def test_whitespace_inside_braces(self):
        assert resolve_value("{{ user.name }}", BINDINGS) == "Ada"

    def test_embedded_placeholders_are_text(self):
        assert resolve_value("Hello {{user.name}}, you have {{trigger.count}}", BINDINGS) == "Hello Ada, you have 3"

    def test_embedded_missing_is_empty(self):
        assert resolve_value("[{{user.email}}]", BINDINGS) == "[]"

    def test_embedded_structures_are_json(self):
        assert resolve_value("data={{results}}", BINDINGS) == 'data={"first key":42}'

    def test_structures_resolved_element_wise(self):
        value = {"to": "{{user.id}}", "tags": ["{{user.name}}", 1], "pair": ("{{trigger.count}}", None)}
        assert resolve_value(value, BINDINGS) == {"to": "u1", "tags": ["Ada", 1], "pair": (3, None)}

    def test_non_strings_unchanged(self):
        assert resolve_value(7, BINDINGS) == 7
        assert resolve_value(None, BINDINGS) is None

    def test_resolution_is_idempotent(self):
        once = resolve_inputs({"greeting": "Hi {{user.name}}", "n": "{{trigger.count}}"}, BINDINGS)
        twice = resolve_inputs(once, BINDINGS)
        assert once == twice

    def test_resolve_inputs_does_not_mutate(self):
        inputs = {"a": "{{trigger.count}}"}
        resolve_inputs(inputs, BINDINGS)
        assert inputs == {"a": "{{trigger.count}}"}


class TestHelpers:
    def test_stringify(self):
        assert stringify(None) == ""
        assert stringify(True) == "true"
        assert stringify([1, 2]) == "[1,2]"
        assert stringify(1.5) == "1.5"

    def test_exact_placeholder(self):
        assert exact_placeholder("{{a.b}}") == "a.b"
        assert exact_placeholder("x {{a.b}}") is None
        assert exact_placeholder(5) is None

    def test_has_placeholders(self):
        assert has_placeholders({"a": ["{{x}}"]})
        assert not has_placeholders({"a": ["x"]})
