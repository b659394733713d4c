"""
Capability descriptors.

A descriptor is the declared calling convention of one capability:
its parameter names in order, which of them may be omitted, and whether
it takes the whole input map as a single record ("wrapped"). Input
adaptation works from this metadata only, so it can be unit-tested with a
hand-written descriptor and never needs to look at the callable's source.

Descriptors come from one of two places:

    explicit   @capability("utilities.math.add", params=["a", "b"])
    inferred   CapabilityDescriptor.from_callable(func)   (inspect.signature)

Inference treats a callable as wrapped only when its single parameter is
annotated as a mapping, a dataclass or a pydantic model. An unannotated
record parameter must be declared with ``wrapped=True``.

Tags:
    capability, descriptor, signature, metadata, relay-core
"""

from __future__ import annotations

import dataclasses
import inspect
import typing
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel


def _is_record_annotation(annotation: Any) -> bool:
    if annotation is inspect.Parameter.empty:
        return False
    origin = typing.get_origin(annotation) or annotation
    if origin in (dict, Mapping, MutableMapping):
        return True
    if isinstance(origin, type):
        if issubclass(origin, BaseModel) or dataclasses.is_dataclass(origin):
            return True
        if issubclass(origin, Mapping):
            return True
    # TypedDict classes are dict subclasses with __annotations__
    return isinstance(annotation, type) and hasattr(annotation, "__total__")


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Declared calling convention of a capability."""

    name: str
    func: Callable[..., Any] = field(compare=False, repr=False)
    parameter_names: tuple[str, ...] = ()
    optional_parameters: frozenset[str] = frozenset()
    keyword_only: frozenset[str] = frozenset()
    wrapped: bool = False
    record_type: Any = field(default=None, compare=False, repr=False)
    is_async: bool = False
    timeout: float | None = None
    description: str = ""

    @property
    def required_parameters(self) -> tuple[str, ...]:
        return tuple(p for p in self.parameter_names if p not in self.optional_parameters)

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        *,
        name: str | None = None,
        params: list[str] | tuple[str, ...] | None = None,
        optional: list[str] | tuple[str, ...] | None = None,
        wrapped: bool | None = None,
        timeout: float | None = None,
        description: str | None = None,
    ) -> CapabilityDescriptor:
        """Build a descriptor, preferring explicit metadata over inspection."""
        is_async = inspect.iscoroutinefunction(func)
        doc = description if description is not None else (inspect.getdoc(func) or "").split("\n")[0]
        record_type = None

        keyword_only: frozenset[str] = frozenset()
        if params is not None:
            names = tuple(params)
            optional_set = frozenset(optional or ())
            is_wrapped = bool(wrapped)
        else:
            names, optional_set, keyword_only, inferred_wrapped, record_type = _inspect_parameters(func)
            if optional is not None:
                optional_set = frozenset(optional)
            is_wrapped = inferred_wrapped if wrapped is None else wrapped

        return cls(
            name=name or getattr(func, "__name__", repr(func)),
            func=func,
            parameter_names=names,
            optional_parameters=optional_set,
            keyword_only=keyword_only,
            wrapped=is_wrapped,
            record_type=record_type,
            is_async=is_async,
            timeout=timeout,
            description=doc,
        )


def _inspect_parameters(
    func: Callable[..., Any],
) -> tuple[tuple[str, ...], frozenset[str], frozenset[str], bool, Any]:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return (), frozenset(), frozenset(), False, None

    try:
        hints = typing.get_type_hints(func)
    except Exception:
        hints = {}

    names: list[str] = []
    optional: set[str] = set()
    keyword_only: set[str] = set()
    for parameter in signature.parameters.values():
        if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        names.append(parameter.name)
        if parameter.default is not inspect.Parameter.empty:
            optional.add(parameter.name)
        if parameter.kind is inspect.Parameter.KEYWORD_ONLY:
            keyword_only.add(parameter.name)

    wrapped = False
    record_type = None
    if len(names) == 1:
        only = signature.parameters[names[0]]
        annotation = hints.get(only.name, only.annotation)
        if _is_record_annotation(annotation):
            wrapped = True
            record_type = annotation
    return tuple(names), frozenset(optional), frozenset(keyword_only), wrapped, record_type


__all__ = ["CapabilityDescriptor"]
