"""Capability resolution, input adaptation and guarded dispatch."""

from relay.capabilities.adapter import PARAMETER_ALIASES, BoundCall, adapt_inputs
from relay.capabilities.descriptor import CapabilityDescriptor
from relay.capabilities.dispatcher import ModuleDispatcher
from relay.capabilities.guards import CapabilityGuards, GuardPolicy
from relay.capabilities.registry import (
    DEFAULT_CATEGORY_MAP,
    CapabilityPath,
    CapabilityRegistry,
    capability_metadata,
)

__all__ = [
    "PARAMETER_ALIASES",
    "BoundCall",
    "adapt_inputs",
    "CapabilityDescriptor",
    "ModuleDispatcher",
    "CapabilityGuards",
    "GuardPolicy",
    "DEFAULT_CATEGORY_MAP",
    "CapabilityPath",
    "CapabilityRegistry",
    "capability_metadata",
]
