"""
Variable resolution for step inputs.

Step inputs are templates. Any string may reference the run's bindings
with ``{{path}}`` placeholders, where a path is dot keys and bracket
indices evaluated left to right::

    {{trigger.payload.items[0].title}}
    {{user.openai}}
    {{results["first key"]}}

Resolution rules:

    "{{a.b}}"             → the referenced value, native type preserved
    "Hello {{user.name}}" → string; each placeholder replaced by its text form
    dict / list / tuple   → resolved element-wise, structure preserved
    anything else         → returned unchanged

A path that hits a missing key, an out-of-range index or a scalar before
it is exhausted resolves to ``None`` (exact placeholder) or ``""``
(embedded). With ``strict=True`` the same situation raises
``UnresolvedVariableError`` instead.

Tags:
    templating, placeholders, variables, resolution, relay-core
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from relay.core.errors import UnresolvedVariableError

PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

_MISSING = object()

_SEGMENT = re.compile(
    r"""
      \[\s*(?P<quoted>"[^"]*"|'[^']*')\s*\]   # ["key"] or ['key']
    | \[\s*(?P<index>[^\]]*?)\s*\]            # [0] or [key]
    | (?P<key>[^.\[\]]+)                      # bare key
    """,
    re.VERBOSE,
)


def split_path(path: str) -> list[str]:
    """Split ``a.b[0]["c d"]`` into ``["a", "b", "0", "c d"]``."""
    segments: list[str] = []
    for match in _SEGMENT.finditer(path.strip()):
        if match.group("quoted") is not None:
            segments.append(match.group("quoted")[1:-1])
        elif match.group("index") is not None:
            if match.group("index"):
                segments.append(match.group("index"))
        else:
            key = match.group("key").strip()
            if key:
                segments.append(key)
    return segments


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, Mapping):
        if segment in current:
            return current[segment]
        return _MISSING
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        try:
            index = int(segment)
        except ValueError:
            return _MISSING
        if -len(current) <= index < len(current):
            return current[index]
        return _MISSING
    # dataclass / model outputs expose fields as attributes
    if current is None or segment.startswith("_") or isinstance(current, _SCALARS):
        return _MISSING
    return getattr(current, segment, _MISSING)


_SCALARS = (str, bytes, int, float, bool)


def lookup_path(bindings: Mapping[str, Any], path: str, *, strict: bool = False) -> Any:
    """Evaluate ``path`` against ``bindings``; ``None`` when it does not resolve."""
    current: Any = bindings
    for segment in split_path(path):
        current = _step(current, segment)
        if current is _MISSING:
            if strict:
                raise UnresolvedVariableError(path.strip())
            return None
    return current


def stringify(value: Any) -> str:
    """Text form of a value substituted into a larger string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, separators=(",", ":"))
    return str(value)


def has_placeholders(value: Any) -> bool:
    if isinstance(value, str):
        return PLACEHOLDER.search(value) is not None
    if isinstance(value, Mapping):
        return any(has_placeholders(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(has_placeholders(v) for v in value)
    return False


def exact_placeholder(value: Any) -> str | None:
    """The path if ``value`` is exactly one placeholder, else ``None``."""
    if not isinstance(value, str):
        return None
    match = PLACEHOLDER.fullmatch(value.strip())
    return match.group(1) if match else None


def resolve_value(value: Any, bindings: Mapping[str, Any], *, strict: bool = False) -> Any:
    if isinstance(value, str):
        path = exact_placeholder(value)
        if path is not None:
            return lookup_path(bindings, path, strict=strict)
        if "{{" not in value:
            return value
        return PLACEHOLDER.sub(
            lambda m: stringify(lookup_path(bindings, m.group(1), strict=strict)), value
        )
    if isinstance(value, Mapping):
        return {k: resolve_value(v, bindings, strict=strict) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, bindings, strict=strict) for v in value]
    if isinstance(value, tuple):
        return tuple(resolve_value(v, bindings, strict=strict) for v in value)
    return value


def resolve_inputs(
    inputs: Mapping[str, Any], bindings: Mapping[str, Any], *, strict: bool = False
) -> dict[str, Any]:
    """Resolve every input of an action step against the current bindings."""
    return {key: resolve_value(value, bindings, strict=strict) for key, value in inputs.items()}


__all__ = [
    "PLACEHOLDER",
    "split_path",
    "lookup_path",
    "stringify",
    "has_placeholders",
    "exact_placeholder",
    "resolve_value",
    "resolve_inputs",
]
