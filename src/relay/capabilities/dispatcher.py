"""
Module Dispatcher - capability path + resolved inputs → result.

The only thing the interpreter knows about capabilities is this call::

    result = dispatcher.dispatch("utilities.math.add", {"a": 2, "b": 3})

Behind it: path resolution (cached), signature adaptation, and the call
guards. Resolution and adaptation failures are raised as-is
(``CapabilityNotFoundError``, ``ParameterMismatchError``); anything that
goes wrong inside the call surfaces as ``CapabilityCallError`` and its
subclasses.

Tags:
    capability, dispatch, relay-core
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

from relay.capabilities.adapter import PARAMETER_ALIASES, adapt_inputs
from relay.capabilities.guards import CapabilityGuards
from relay.capabilities.registry import CapabilityRegistry
from relay.core.logging import get_logger

logger = get_logger(__name__)


class ModuleDispatcher:
    """Locate, adapt and invoke capabilities by dotted path."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        guards: CapabilityGuards | None = None,
        *,
        aliases: Mapping[str, tuple[str, ...]] = PARAMETER_ALIASES,
    ):
        self.registry = registry
        self.guards = guards or CapabilityGuards()
        self.aliases = aliases

    def dispatch(self, path: str, inputs: Mapping[str, Any]) -> Any:
        resolved = self.registry.resolve(path)
        descriptor = resolved.descriptor
        call = adapt_inputs(descriptor, inputs, path=path, aliases=self.aliases)

        logger.info(
            "capability.dispatch",
            path=path,
            convention=call.convention,
            input_keys=list(inputs),
        )
        started = time.monotonic()
        result = self.guards.call(
            path,
            descriptor.func,
            call.args,
            call.kwargs,
            timeout=descriptor.timeout,
        )
        logger.debug(
            "capability.returned",
            path=path,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result


__all__ = ["ModuleDispatcher"]
