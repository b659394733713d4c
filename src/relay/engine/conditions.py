"""
Condition predicates for condition steps.

A condition may be written in any of these shapes::

    true / false                                   literal
    "{{trigger.approved}}"                         truthiness of one value
    "{{order.total}} > 100 && {{order.country}} === 'DE'"
    {"left": "{{order.total}}", "operator": "gt", "right": 100}
    {"all": [...]}, {"any": [...]}, {"not": ...}   combinators

Expression strings are evaluated without ``eval``: placeholders become
bound names, the JavaScript-flavoured operators people paste into
workflow definitions (``&& || ! === !== true false null``) are rewritten
to Python, the result is parsed with :mod:`ast` and walked by an
evaluator that only knows a whitelist of node types.

Comparison semantics:
    - numeric strings compare numerically against numbers ("10" > 9)
    - operands that cannot be ordered compare as False instead of raising
    - ``a contains b`` is ``b in a`` (substring, list member, dict key)

Malformed expressions and unknown operators raise ``ConditionError``.

Tags:
    conditions, expressions, ast, safe-eval, relay-core
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable, Mapping
from typing import Any

from relay.core.errors import ConditionError
from relay.engine.resolver import (
    PLACEHOLDER,
    exact_placeholder,
    lookup_path,
    resolve_value,
    stringify,
)

# Double- or single-quoted string literal; everything else is code.
_STRING_LITERAL = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""")

_JS_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
    (re.compile(r"\bcontains\b"), "@"),
)

_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": len,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
}

_BINARY: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}


def _contains(container: Any, item: Any) -> bool:
    if container is None:
        return False
    if isinstance(container, str):
        return str(item) in container
    try:
        return item in container
    except TypeError:
        return False


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any]:
    """Make "10" and 10 comparable; leave everything else alone."""
    if _is_number(left) and isinstance(right, str):
        number = _to_number(right)
        if number is not None:
            return left, number
    elif isinstance(left, str) and _is_number(right):
        number = _to_number(left)
        if number is not None:
            return number, right
    return left, right


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(text: str) -> int | float | None:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def compare(op: str, left: Any, right: Any) -> bool:
    """Apply a named comparison with numeric coercion."""
    if op in ("contains", "includes"):
        return _contains(left, right)
    if op == "not_contains":
        return not _contains(left, right)
    if op == "in":
        return _contains(right, left)
    if op == "not_in":
        return not _contains(right, left)

    left, right = _coerce_pair(left, right)
    try:
        if op == "eq":
            return left == right
        if op == "ne":
            return left != right
        if op == "gt":
            return left > right
        if op == "ge":
            return left >= right
        if op == "lt":
            return left < right
        if op == "le":
            return left <= right
    except TypeError:
        return False
    raise ConditionError(f"Unknown comparison operator: {op!r}")


_COMPARE_NODES: dict[type, str] = {
    ast.Eq: "eq",
    ast.NotEq: "ne",
    ast.Gt: "gt",
    ast.GtE: "ge",
    ast.Lt: "lt",
    ast.LtE: "le",
    ast.In: "in",
    ast.NotIn: "not_in",
}

_OPERATOR_NAMES: dict[str, str] = {
    "==": "eq", "===": "eq", "eq": "eq", "equals": "eq",
    "!=": "ne", "!==": "ne", "ne": "ne", "neq": "ne", "not_equals": "ne",
    ">": "gt", "gt": "gt", "greater_than": "gt",
    ">=": "ge", "gte": "ge", "ge": "ge", "greater_equal": "ge",
    "<": "lt", "lt": "lt", "less_than": "lt",
    "<=": "le", "lte": "le", "le": "le", "less_equal": "le",
    "contains": "contains", "includes": "contains",
    "not_contains": "not_contains",
    "in": "in", "not_in": "not_in",
}


class _Evaluator:
    def __init__(self, names: Mapping[str, Any], bindings: Mapping[str, Any]):
        self.names = names
        self.bindings = bindings

    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return self.visit(node.body)
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in self.names:
                return self.names[node.id]
            return lookup_path(self.bindings, node.id)
        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self.visit(value)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self.visit(value)
                if result:
                    return result
            return result
        if isinstance(node, ast.UnaryOp):
            operand = self.visit(node.operand)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.UAdd):
                return +operand
        if isinstance(node, ast.BinOp):
            left, right = self.visit(node.left), self.visit(node.right)
            if isinstance(node.op, ast.MatMult):
                return _contains(left, right)
            func = _BINARY.get(type(node.op))
            if func is not None:
                try:
                    return func(left, right)
                except (TypeError, ZeroDivisionError) as exc:
                    raise ConditionError(f"Cannot evaluate condition: {exc}") from exc
        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op_node, comparator in zip(node.ops, node.comparators):
                right = self.visit(comparator)
                name = _COMPARE_NODES.get(type(op_node))
                if name is None:
                    break
                if not compare(name, left, right):
                    return False
                left = right
            else:
                return True
        if isinstance(node, (ast.List, ast.Tuple)):
            return [self.visit(element) for element in node.elts]
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Name)
            and node.func.id in _FUNCTIONS
            and not node.keywords
        ):
            args = [self.visit(arg) for arg in node.args]
            try:
                return _FUNCTIONS[node.func.id](*args)
            except (TypeError, ValueError) as exc:
                raise ConditionError(f"Cannot evaluate condition: {exc}") from exc
        raise ConditionError(f"Unsupported expression element: {ast.dump(node)[:60]}")


def _translate(expression: str, names: dict[str, Any], bindings: Mapping[str, Any]) -> str:
    """Replace placeholders with bound names and JS operators with Python ones."""

    def bind(match: re.Match[str]) -> str:
        name = f"_v{len(names)}"
        names[name] = lookup_path(bindings, match.group(1))
        return f" {name} "

    parts = _STRING_LITERAL.split(expression)
    out: list[str] = []
    for index, part in enumerate(parts):
        if index % 2:
            out.append(part)
            continue
        code = PLACEHOLDER.sub(bind, part)
        for pattern, replacement in _JS_REWRITES:
            code = pattern.sub(replacement, code)
        out.append(code)
    return "".join(out)


def evaluate_expression(expression: str, bindings: Mapping[str, Any]) -> Any:
    names: dict[str, Any] = {}
    # placeholders inside quoted literals are substituted as text first
    expression = _STRING_LITERAL.sub(
        lambda m: m.group(0) if "{{" not in m.group(0) else repr(stringify(resolve_value(m.group(0)[1:-1], bindings))),
        expression,
    )
    source = _translate(expression, names, bindings).strip()
    if not source:
        raise ConditionError("Empty condition")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ConditionError(f"Invalid condition {expression!r}: {exc.msg}") from exc
    return _Evaluator(names, bindings).visit(tree)


def _evaluate_structured(condition: Mapping[str, Any], bindings: Mapping[str, Any]) -> bool:
    if "all" in condition:
        return all(evaluate_condition(c, bindings) for c in condition["all"])
    if "any" in condition:
        return any(evaluate_condition(c, bindings) for c in condition["any"])
    if "not" in condition:
        return not evaluate_condition(condition["not"], bindings)

    op_text = str(condition.get("operator", condition.get("op", "eq"))).strip().lower()
    left = resolve_value(condition.get("left"), bindings)
    if op_text in ("exists", "is_set"):
        return left is not None
    if op_text in ("not_exists", "is_not_set"):
        return left is None
    if op_text in ("is_empty", "empty"):
        return not left
    if op_text in ("is_not_empty", "not_empty"):
        return bool(left)
    right = resolve_value(condition.get("right"), bindings)
    if op_text == "matches":
        return left is not None and re.search(str(right), str(left)) is not None
    name = _OPERATOR_NAMES.get(op_text)
    if name is None:
        raise ConditionError(f"Unknown comparison operator: {op_text!r}")
    return compare(name, left, right)


def evaluate_condition(condition: Any, bindings: Mapping[str, Any]) -> bool:
    """Evaluate a condition step's predicate to a boolean."""
    if isinstance(condition, bool) or condition is None:
        return bool(condition)
    if isinstance(condition, (int, float)):
        return bool(condition)
    if isinstance(condition, Mapping):
        return bool(_evaluate_structured(condition, bindings))
    if isinstance(condition, str):
        path = exact_placeholder(condition)
        if path is not None:
            value = lookup_path(bindings, path)
            if isinstance(value, str):
                return value.strip().lower() not in ("", "false", "0", "no", "null")
            return bool(value)
        return bool(evaluate_expression(condition, bindings))
    raise ConditionError(f"Unsupported condition type: {type(condition).__name__}")


__all__ = ["compare", "evaluate_expression", "evaluate_condition"]
