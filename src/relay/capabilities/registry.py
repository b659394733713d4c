"""
Capability registry - dotted path → callable.

Workflow steps address capabilities as ``category.service.function``. The
category is matched against a category → namespace table, trying a
two-word category first when the path is long enough (``social.media.
twitter.post`` is category "social media"). The namespace and service then
select a registered capability, or, for namespaces bound to a Python
package, the module ``<package>.<service>`` is imported on first use and
its function picked up. Only public functions defined in that module (or
listed in its ``__all__``) are reachable; names it imports are not.

Manifesto:
    The dotted path is an external contract: authoring tools write it and
    stored workflows depend on it. Inside the core it is parsed once,
    resolved once, and cached as a typed handle, so dispatching the same
    step a thousand times never re-parses or re-imports anything.

Architecture:
    ::

        "utilities.math.add"
              │ parse_path
              ▼
        CapabilityPath(namespace="utilities", service="math", function="add")
              │ resolve (cache → explicit registrations → package import)
              ▼
        ResolvedCapability(path, descriptor)

Examples:
    >>> registry = CapabilityRegistry()
    >>> @registry.capability("utilities.math.add")
    ... def add(a: float, b: float) -> float:
    ...     return a + b
    >>> registry.resolve("utilities.math.add").descriptor.parameter_names
    ('a', 'b')

Tags:
    capability, registry, dispatch, dynamic-import, relay-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import importlib
import inspect
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from types import ModuleType
from typing import Any

from relay.capabilities.descriptor import CapabilityDescriptor
from relay.core.errors import CapabilityNotFoundError
from relay.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CATEGORY_MAP: dict[str, str] = {
    "communication": "communication",
    "social media": "social",
    "social": "social",
    "ai": "ai",
    "data": "data",
    "utilities": "utilities",
    "payments": "payments",
    "productivity": "productivity",
    "business": "business",
    "content": "content",
    "data processing": "dataprocessing",
    "dataprocessing": "dataprocessing",
    "developer tools": "devtools",
    "dev tools": "devtools",
    "devtools": "devtools",
    "e-commerce": "ecommerce",
    "ecommerce": "ecommerce",
    "lead generation": "leads",
    "leads": "leads",
    "video automation": "video",
    "video": "video",
    "external apis": "external-apis",
    "external-apis": "external-apis",
}


@dataclass(frozen=True)
class CapabilityPath:
    """Parsed form of a dotted capability path."""

    raw: str
    namespace: str
    service: str
    function: str

    @property
    def key(self) -> str:
        return f"{self.namespace}.{self.service}.{self.function}"


@dataclass(frozen=True)
class ResolvedCapability:
    path: CapabilityPath
    descriptor: CapabilityDescriptor


class CapabilityRegistry:
    """Registry of capabilities keyed by ``namespace.service.function``."""

    def __init__(
        self,
        category_map: Mapping[str, str] | None = None,
        packages: Mapping[str, str] | None = None,
    ):
        self._categories: dict[str, str] = dict(DEFAULT_CATEGORY_MAP)
        if category_map:
            self._categories.update({k.lower(): v for k, v in category_map.items()})
        self._packages: dict[str, str] = dict(packages or {})
        self._registered: dict[str, CapabilityDescriptor] = {}
        self._resolved: dict[str, ResolvedCapability] = {}
        self._lock = threading.RLock()

    # -- configuration ------------------------------------------------------

    def add_category(self, category: str, namespace: str) -> None:
        with self._lock:
            self._categories[category.lower()] = namespace
            self._resolved.clear()

    def bind_package(self, namespace: str, package: str) -> None:
        """Resolve ``namespace.<service>.<fn>`` by importing ``package.<service>``."""
        with self._lock:
            self._packages[namespace] = package
            self._resolved.clear()

    @property
    def namespaces(self) -> set[str]:
        return set(self._categories.values())

    # -- registration -------------------------------------------------------

    def register(
        self,
        path: str,
        func: Callable[..., Any],
        *,
        params: list[str] | tuple[str, ...] | None = None,
        optional: list[str] | tuple[str, ...] | None = None,
        wrapped: bool | None = None,
        timeout: float | None = None,
        description: str | None = None,
        replace: bool = False,
    ) -> CapabilityDescriptor:
        parsed = self.parse_path(path)
        descriptor = CapabilityDescriptor.from_callable(
            func,
            name=parsed.key,
            params=params,
            optional=optional,
            wrapped=wrapped,
            timeout=timeout,
            description=description,
        )
        with self._lock:
            if parsed.key in self._registered and not replace:
                raise ValueError(f"Capability '{parsed.key}' is already registered")
            self._registered[parsed.key] = descriptor
            self._resolved.pop(parsed.key, None)
        logger.debug(
            "capability.registered",
            path=parsed.key,
            params=list(descriptor.parameter_names),
            wrapped=descriptor.wrapped,
        )
        return descriptor

    def capability(self, path: str, **options: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of :meth:`register`."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(path, func, **options)
            return func

        return decorator

    def register_module(
        self,
        namespace: str,
        service: str,
        module: ModuleType | Any,
        *,
        names: Iterable[str] | None = None,
    ) -> list[str]:
        """Register the public functions of ``module`` under ``namespace.service``."""
        registered = []
        for name, func in _public_functions(module, names):
            path = f"{namespace}.{service}.{name}"
            metadata = getattr(func, "__capability__", {})
            self.register(path, func, replace=True, **metadata)
            registered.append(path)
        return registered

    def clear(self) -> None:
        """Clear registrations and cache (for testing)."""
        with self._lock:
            self._registered.clear()
            self._resolved.clear()

    # -- resolution ---------------------------------------------------------

    def parse_path(self, path: str) -> CapabilityPath:
        parts = [p for p in path.strip().split(".")]
        if len(parts) >= 3 and all(parts):
            if len(parts) >= 4:
                two_word = f"{parts[0]} {parts[1]}".lower()
                namespace = self._categories.get(two_word)
                if namespace:
                    return CapabilityPath(path, namespace, parts[2], ".".join(parts[3:]))
            namespace = self._categories.get(parts[0].lower())
            if namespace:
                return CapabilityPath(path, namespace, parts[1], ".".join(parts[2:]))
            if len(parts) == 3 and parts[0] in self._categories.values():
                return CapabilityPath(path, parts[0], parts[1], parts[2])
            raise CapabilityNotFoundError(
                path, f"Capability not found: {path} (unknown category '{parts[0]}')"
            )
        raise CapabilityNotFoundError(
            path,
            f"Invalid module path: {path}. Expected format: category.module.function",
        )

    def resolve(self, path: str) -> ResolvedCapability:
        cached = self._resolved.get(path)
        if cached is not None:
            return cached

        parsed = self.parse_path(path)
        with self._lock:
            descriptor = self._registered.get(parsed.key)
            if descriptor is None:
                descriptor = self._import(parsed)
            resolved = ResolvedCapability(parsed, descriptor)
            self._resolved[path] = resolved
        logger.debug("capability.resolved", path=path, key=parsed.key)
        return resolved

    def _import(self, parsed: CapabilityPath) -> CapabilityDescriptor:
        package = self._packages.get(parsed.namespace)
        if package is None:
            raise CapabilityNotFoundError(
                parsed.raw, f"Capability not found: {parsed.raw} (no capabilities in '{parsed.namespace}')"
            )
        module_name = f"{package}.{parsed.service}"
        try:
            module = importlib.import_module(module_name)
        except ModuleNotFoundError as exc:
            if exc.name and module_name.startswith(exc.name):
                raise CapabilityNotFoundError(
                    parsed.raw,
                    f"Capability not found: {parsed.raw} (no service '{parsed.service}' in '{parsed.namespace}')",
                    cause=exc,
                ) from exc
            raise

        func = dict(_public_functions(module, None)).get(parsed.function)
        if func is None:
            raise CapabilityNotFoundError(
                parsed.raw,
                f"Function {parsed.function} not found in module {parsed.namespace}/{parsed.service}",
            )
        metadata = getattr(func, "__capability__", {})
        descriptor = CapabilityDescriptor.from_callable(func, name=parsed.key, **metadata)
        self._registered[parsed.key] = descriptor
        return descriptor

    def has(self, path: str) -> bool:
        try:
            self.resolve(path)
        except CapabilityNotFoundError:
            return False
        return True

    def list_capabilities(self, *, load_packages: bool = False) -> list[CapabilityDescriptor]:
        """Registered capabilities, optionally importing every bound package first."""
        if load_packages:
            for namespace, package in list(self._packages.items()):
                self._load_package(namespace, package)
        with self._lock:
            return [self._registered[key] for key in sorted(self._registered)]

    def _load_package(self, namespace: str, package: str) -> None:
        module = importlib.import_module(package)
        services = getattr(module, "__services__", ())
        for service in services:
            submodule = importlib.import_module(f"{package}.{service}")
            for name, func in _public_functions(submodule, None):
                key = f"{namespace}.{service}.{name}"
                if key not in self._registered:
                    metadata = getattr(func, "__capability__", {})
                    self._registered[key] = CapabilityDescriptor.from_callable(func, name=key, **metadata)


def _public_functions(module: Any, names: Iterable[str] | None) -> list[tuple[str, Callable[..., Any]]]:
    if names is not None:
        return [(name, getattr(module, name)) for name in names]
    exported = getattr(module, "__all__", None)
    result = []
    for name, value in vars(module).items():
        if name.startswith("_") or not inspect.isfunction(value):
            continue
        if exported is not None and name not in exported:
            continue
        if exported is None and value.__module__ != getattr(module, "__name__", None):
            continue
        result.append((name, value))
    return result


def capability_metadata(**metadata: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Attach explicit descriptor metadata to a capability function.

    Example:
        @capability_metadata(params=["date", "days"], optional=["days"])
        def add_days(date, days=1): ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        func.__capability__ = metadata  # type: ignore[attr-defined]
        return func

    return decorator


__all__ = [
    "DEFAULT_CATEGORY_MAP",
    "CapabilityPath",
    "ResolvedCapability",
    "CapabilityRegistry",
    "capability_metadata",
]
