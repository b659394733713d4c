"""
Binding Environment - run-scoped name → value map.

Every placeholder in a step's inputs is resolved against one of these.
It is created once per run, seeded from the invocation, and grows as
action steps bind their outputs::

    trigger   → the invocation payload ({} when none)
    user      → {"id": user_id, **credentials}
    tenant    → {"id": tenant_id}            (only when the workflow has one)
    workflow  → {"id": workflow_id, "runId": run_id}
    <platform>→ each credential, also at top level ({{openai}})
    <outputAs>→ each action step's output, in execution order

Loops bind their item (and ``<item>_index``) inside ``scoped()``, which
puts back whatever the names held before the loop started, so an
iteration variable never leaks past its loop.

Tags:
    bindings, variables, context, relay-core
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from relay.engine.resolver import lookup_path

_UNSET = object()


class BindingEnvironment(Mapping[str, Any]):
    """Mutable mapping of names visible to placeholders during one run."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._values: dict[str, Any] = dict(initial or {})

    @classmethod
    def create(
        cls,
        *,
        user_id: str,
        trigger_payload: Mapping[str, Any] | None = None,
        credentials: Mapping[str, Any] | None = None,
        tenant_id: str | None = None,
        workflow_id: str | None = None,
        run_id: str | None = None,
    ) -> BindingEnvironment:
        credentials = dict(credentials or {})
        values: dict[str, Any] = dict(credentials)
        values["user"] = {"id": user_id, **credentials}
        values["trigger"] = dict(trigger_payload) if trigger_payload else {}
        if tenant_id is not None:
            values["tenant"] = {"id": tenant_id}
        if workflow_id is not None:
            values["workflow"] = {"id": workflow_id, "runId": run_id}
        return cls(values)

    # -- Mapping ----------------------------------------------------------

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    # -- mutation ---------------------------------------------------------

    def bind(self, name: str, value: Any) -> None:
        self._values[name] = value

    def resolve(self, path: str) -> Any:
        """Value at a dotted/bracket path, ``None`` if it does not resolve."""
        return lookup_path(self._values, path)

    @contextmanager
    def scoped(self, **bindings: Any) -> Iterator[BindingEnvironment]:
        """Temporarily bind names; previous values are restored on exit."""
        previous = {name: self._values.get(name, _UNSET) for name in bindings}
        self._values.update(bindings)
        try:
            yield self
        finally:
            for name, value in previous.items():
                if value is _UNSET:
                    self._values.pop(name, None)
                else:
                    self._values[name] = value

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the current bindings (for debugging and tests)."""
        return copy.deepcopy(self._values)

    def __repr__(self) -> str:
        return f"BindingEnvironment({sorted(self._values)!r})"


__all__ = ["BindingEnvironment"]
