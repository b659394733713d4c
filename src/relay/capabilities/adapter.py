"""
Input-to-signature adaptation.

Capabilities are written independently and share no calling convention.
Some take one record, some take a handful of positional parameters, some
take nothing at all. ``adapt_inputs`` maps a step's resolved input map onto
whatever a capability's descriptor declares:

    ┌────────────────────────────────────────────┬──────────────────────────┐
    │ descriptor                                 │ call                     │
    ├────────────────────────────────────────────┼──────────────────────────┤
    │ no parameters                              │ f()                      │
    │ one plain parameter, exactly one input     │ f(<that input>)          │
    │ wrapped (single record parameter)          │ f(inputs) / f(Model(...))│
    │ several parameters, all found by name/alias│ f(v1, v2, ..., k=v)      │
    │ no name match, same count                  │ f(*inputs.values()) + ⚠  │
    │ otherwise                                  │ ParameterMismatchError   │
    └────────────────────────────────────────────┴──────────────────────────┘

Name matching consults ``PARAMETER_ALIASES`` when a parameter's own name is
absent, so a step written with ``maxResults`` still reaches a ``limit``
parameter. Parameters with defaults may be left out; once one is skipped,
the remaining matches are passed by keyword so they land in the right
slot.

Tags:
    capability, adaptation, signature, parameters, aliases, relay-core
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from relay.capabilities.descriptor import CapabilityDescriptor
from relay.core.errors import ParameterMismatchError
from relay.core.logging import get_logger

logger = get_logger(__name__)

PARAMETER_ALIASES: dict[str, tuple[str, ...]] = {
    "days": ("amount", "value", "number"),
    "hours": ("amount", "value", "number"),
    "minutes": ("amount", "value", "number"),
    "limit": ("maxResults", "max", "count"),
    "query": ("search", "q", "term"),
    "text": ("message", "content", "body"),
}


class Convention:
    NONE = "none"
    SINGLE = "single"
    WRAPPED = "wrapped"
    NAMED = "named"
    POSITIONAL = "positional"


@dataclass
class BoundCall:
    """Arguments ready to apply to a capability."""

    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    convention: str = Convention.NONE

    def apply(self, func: Any) -> Any:
        return func(*self.args, **self.kwargs)


def _build_record(record_type: Any, inputs: Mapping[str, Any]) -> Any:
    if isinstance(record_type, type):
        if issubclass(record_type, BaseModel):
            return record_type.model_validate(dict(inputs))
        if dataclasses.is_dataclass(record_type):
            names = {f.name for f in dataclasses.fields(record_type)}
            return record_type(**{k: v for k, v in inputs.items() if k in names})
    return dict(inputs)


def _match(name: str, inputs: Mapping[str, Any], aliases: Mapping[str, tuple[str, ...]]) -> str | None:
    if name in inputs:
        return name
    for alias in aliases.get(name, ()):
        if alias in inputs:
            return alias
    return None


def adapt_inputs(
    descriptor: CapabilityDescriptor,
    inputs: Mapping[str, Any],
    *,
    path: str | None = None,
    aliases: Mapping[str, tuple[str, ...]] = PARAMETER_ALIASES,
) -> BoundCall:
    """Map resolved step inputs onto the capability's declared parameters."""
    path = path or descriptor.name
    params = descriptor.parameter_names

    if not params:
        if inputs:
            logger.debug("capability.inputs_ignored", path=path, inputs=list(inputs))
        return BoundCall(convention=Convention.NONE)

    if descriptor.wrapped:
        return BoundCall(
            args=(_build_record(descriptor.record_type, inputs),),
            convention=Convention.WRAPPED,
        )

    if len(params) == 1 and len(inputs) == 1 and params[0] not in descriptor.keyword_only:
        return BoundCall(args=(next(iter(inputs.values())),), convention=Convention.SINGLE)

    args: list[Any] = []
    kwargs: dict[str, Any] = {}
    mapping: dict[str, str] = {}
    skipped = False
    complete = True
    for name in params:
        key = _match(name, inputs, aliases)
        if key is None:
            if name in descriptor.optional_parameters:
                skipped = True
                continue
            complete = False
            break
        mapping[name] = key
        if skipped or name in descriptor.keyword_only:
            kwargs[name] = inputs[key]
        else:
            args.append(inputs[key])

    if complete:
        logger.debug("capability.inputs_mapped", path=path, mapping=mapping)
        return BoundCall(args=tuple(args), kwargs=kwargs, convention=Convention.NAMED)

    if len(inputs) == len(params) and not descriptor.keyword_only:
        logger.warning(
            "capability.positional_fallback",
            path=path,
            expected_params=list(params),
            provided_inputs=list(inputs),
        )
        return BoundCall(args=tuple(inputs.values()), convention=Convention.POSITIONAL)

    logger.error(
        "capability.parameter_mismatch",
        path=path,
        expected_params=list(params),
        provided_inputs=list(inputs),
    )
    raise ParameterMismatchError(path, list(params), list(inputs))


__all__ = ["PARAMETER_ALIASES", "BoundCall", "Convention", "adapt_inputs"]
