"""
Structured error types for relay.

Every failure the execution core can produce is a RelayError subclass that
carries a category, a retryable flag, structured context and an optional
chained cause. The interpreter turns these into the ``error`` /
``errorStep`` fields of a run; the recorder and queue use ``retryable`` to
decide whether a persistence write is worth another attempt.

Manifesto:
    - **Typed hierarchy:** one exception type per failure the caller can act on
    - **Verbatim messages:** the message is what ends up in the run record
    - **Rich context:** workflow / run / step ids travel with the error

Architecture:
    ::

        RelayError (category, retryable, context, cause)
        ├── CapabilityError                 (CAPABILITY)
        │   ├── CapabilityNotFoundError
        │   ├── ParameterMismatchError
        │   └── CapabilityCallError
        │       ├── CapabilityTimeoutError     retryable
        │       ├── CapabilityUnavailableError retryable (breaker open)
        │       └── CapabilityRateLimitedError retryable (backlog full)
        ├── WorkflowError                   (WORKFLOW)
        │   ├── WorkflowNotFoundError
        │   ├── WorkflowValidationError
        │   ├── TenantInactiveError
        │   ├── UnresolvedVariableError
        │   ├── ConditionError
        │   └── StepExecutionError (step_id)
        ├── ScheduleInvalidError            (SCHEDULING)
        ├── QueueUnavailableError           (QUEUE)      retryable
        └── PersistenceError                (PERSISTENCE) retryable

Tags:
    errors, exceptions, error-handling, retry, relay-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CAPABILITY = "CAPABILITY"
    WORKFLOW = "WORKFLOW"
    SCHEDULING = "SCHEDULING"
    QUEUE = "QUEUE"
    PERSISTENCE = "PERSISTENCE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    workflow_id: str | None = None
    run_id: str | None = None
    step_id: str | None = None
    capability: str | None = None
    tenant_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {}
        for key in ("workflow_id", "run_id", "step_id", "capability", "tenant_id"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RelayError(Exception):
    """Base exception for all relay errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.

    Example:
        raise CapabilityCallError("Failed to execute a.b.c: boom").with_context(
            run_id=run_id, step_id="s1"
        )
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelayError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CAPABILITY ERRORS
# =============================================================================


class CapabilityError(RelayError):
    """Failure locating, adapting or invoking a capability."""

    default_category = ErrorCategory.CAPABILITY


class CapabilityNotFoundError(CapabilityError):
    """Unknown category, service or function in a module path."""

    def __init__(self, path: str, reason: str | None = None, **kwargs: Any):
        self.path = path
        message = reason or f"Capability not found: {path}"
        super().__init__(message, **kwargs)
        self.context.capability = path


class ParameterMismatchError(CapabilityError):
    """Step inputs cannot be mapped onto the capability's parameters."""

    def __init__(
        self,
        path: str,
        expected: list[str],
        provided: list[str],
        **kwargs: Any,
    ):
        self.path = path
        self.expected = list(expected)
        self.provided = list(provided)
        message = (
            f"Parameter mismatch for {path}: Function expects "
            f"[{', '.join(self.expected)}] but workflow provided "
            f"[{', '.join(self.provided)}]"
        )
        super().__init__(message, **kwargs)
        self.context.capability = path


class CapabilityCallError(CapabilityError):
    """The capability raised, timed out or was refused by a guard."""

    def __init__(self, path: str, detail: str, **kwargs: Any):
        self.path = path
        self.detail = detail
        super().__init__(f"Failed to execute {path}: {detail}", **kwargs)
        self.context.capability = path


class CapabilityTimeoutError(CapabilityCallError):
    """The capability did not return within its timeout."""

    default_retryable = True

    def __init__(self, path: str, timeout: float, **kwargs: Any):
        self.timeout = timeout
        super().__init__(path, f"timed out after {timeout:g}s", **kwargs)


class CapabilityUnavailableError(CapabilityCallError):
    """The capability's circuit breaker is open."""

    default_retryable = True

    def __init__(self, path: str, retry_in: float | None = None, **kwargs: Any):
        self.retry_in = retry_in
        detail = "circuit open"
        if retry_in is not None:
            detail += f", retry in {retry_in:.1f}s"
        super().__init__(path, detail, **kwargs)


class CapabilityRateLimitedError(CapabilityCallError):
    """The capability's rate-limit backlog is full."""

    default_retryable = True

    def __init__(self, path: str, **kwargs: Any):
        super().__init__(path, "rate limit backlog full", **kwargs)


# =============================================================================
# WORKFLOW ERRORS
# =============================================================================


class WorkflowError(RelayError):
    """Workflow definition or execution error."""

    default_category = ErrorCategory.WORKFLOW


class WorkflowNotFoundError(WorkflowError):
    def __init__(self, workflow_id: str, **kwargs: Any):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}", **kwargs)
        self.context.workflow_id = workflow_id


class WorkflowValidationError(WorkflowError):
    """Malformed workflow definition (bad step shape, duplicate ids...)."""


class TenantInactiveError(WorkflowError):
    def __init__(self, tenant_id: str, **kwargs: Any):
        self.tenant_id = tenant_id
        super().__init__(
            "Cannot execute workflow: client organization is inactive", **kwargs
        )
        self.context.tenant_id = tenant_id


class UnresolvedVariableError(WorkflowError):
    """A placeholder referenced a binding that does not exist (strict mode)."""

    def __init__(self, path: str, **kwargs: Any):
        self.path = path
        super().__init__(f"Unresolved variable: {{{{{path}}}}}", **kwargs)


class ConditionError(WorkflowError):
    """A condition expression could not be parsed or evaluated."""


class StepExecutionError(WorkflowError):
    """A step failed; carries the id of the innermost failing step."""

    def __init__(self, step_id: str, message: str, **kwargs: Any):
        self.step_id = step_id
        super().__init__(message, **kwargs)
        self.context.step_id = step_id


# =============================================================================
# INFRASTRUCTURE ERRORS
# =============================================================================


class ScheduleInvalidError(RelayError):
    """A time-based trigger carries an invalid cron expression."""

    default_category = ErrorCategory.SCHEDULING

    def __init__(self, workflow_id: str, expression: Any, reason: str = "", **kwargs: Any):
        self.workflow_id = workflow_id
        self.expression = expression
        message = f"Invalid schedule {expression!r} for workflow {workflow_id}"
        if reason:
            message += f": {reason}"
        super().__init__(message, **kwargs)
        self.context.workflow_id = workflow_id


class QueueUnavailableError(RelayError):
    """The durable queue is not initialized or is shutting down."""

    default_category = ErrorCategory.QUEUE
    default_retryable = True


class PersistenceError(RelayError):
    """A run-history or rollup write failed."""

    default_category = ErrorCategory.PERSISTENCE
    default_retryable = True


class ConfigError(RelayError):
    default_category = ErrorCategory.CONFIG


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is worth retrying."""
    if isinstance(error, RelayError):
        return error.retryable
    return isinstance(error, (ConnectionError, OSError))


def error_message(error: BaseException) -> str:
    """The message recorded for a failed run or step."""
    if isinstance(error, RelayError):
        return error.message
    text = str(error)
    return text or error.__class__.__name__


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RelayError",
    "CapabilityError",
    "CapabilityNotFoundError",
    "ParameterMismatchError",
    "CapabilityCallError",
    "CapabilityTimeoutError",
    "CapabilityUnavailableError",
    "CapabilityRateLimitedError",
    "WorkflowError",
    "WorkflowNotFoundError",
    "WorkflowValidationError",
    "TenantInactiveError",
    "UnresolvedVariableError",
    "ConditionError",
    "StepExecutionError",
    "ScheduleInvalidError",
    "QueueUnavailableError",
    "PersistenceError",
    "ConfigError",
    "is_retryable",
    "error_message",
]
