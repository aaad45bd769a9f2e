"""
Structured error types for the hinge runtime.

Every public operation in hinge either returns a structured result or raises
one of the typed errors below. Each error carries a category, a retryable
flag, structured context and an optional chained cause, so callers (the
scheduler, the flow engine, the plugin pipeline) can decide whether to retry,
route to an ``error`` edge, or surface the failure.

Manifesto:
    - **Typed hierarchy:** one subclass per failure family
    - **Explicit retry semantics:** each error knows if it is retryable
    - **Rich context:** plugin, flow, node, task and operation identifiers
    - **Chaining:** user-code failures keep their original exception as cause

Architecture:
    ::

        HingeError(message, category, retryable, context, cause)
          ├── ValidationError          VALIDATION   field, value, errors
          ├── ConfigError              CONFIG
          ├── NotFoundError            NOT_FOUND    kind, key
          ├── InvalidTransitionError   STATE        current, target
          ├── TimeoutError             TIMEOUT      retryable, also builtins.TimeoutError
          ├── DependencyError          DEPENDENCY   plugin, missing, cycle
          └── ExecutionError           EXECUTION    cause = the user exception

Examples:
    >>> err = NotFoundError("task", "abc")
    >>> err.category
    <ErrorCategory.NOT_FOUND: 'NOT_FOUND'>
    >>> str(err)
    'Task not found: abc'

    >>> try:
    ...     raise KeyError("boom")
    ... except KeyError as e:
    ...     wrapped = ExecutionError("Action failed", cause=e)
    >>> wrapped.cause
    KeyError('boom')

Guardrails:
    ❌ DON'T: raise bare Exception from runtime code
    ✅ DO: pick the subclass matching the failure family

    ❌ DON'T: drop the user exception when wrapping it
    ✅ DO: pass it as ``cause=``

Tags:
    error-handling, exception-hierarchy, retry-logic, hinge-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import builtins
from collections.abc import Iterable
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"     # Malformed plugin/flow/task definitions
    NOT_FOUND = "NOT_FOUND"       # Unknown plugin/task/operation/logic point
    TIMEOUT = "TIMEOUT"           # Operation exceeded its allotted time
    DEPENDENCY = "DEPENDENCY"     # Unresolved or circular plugin dependency
    EXECUTION = "EXECUTION"       # Failure raised by user-supplied code
    STATE = "STATE"               # Illegal lifecycle move
    CONFIG = "CONFIG"             # Invalid runtime configuration
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only fields that are set end up in :meth:`to_dict`.
    """

    plugin: str | None = None
    flow_id: str | None = None
    execution_id: str | None = None
    node_id: str | None = None
    task_id: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        ids = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "metadata"}
        return {**{k: v for k, v in ids.items() if v is not None}, **self.metadata}


class HingeError(Exception):
    """
    Base exception for all hinge runtime errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.

    Example:
        >>> err = HingeError("unexpected").with_context(plugin="wallet")
        >>> err.to_dict()["context"]
        {'plugin': 'wallet'}
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

    def with_context(self, **kwargs: Any) -> HingeError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Flat, JSON-friendly form used in log fields and task results."""
        payload: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if context := self.context.to_dict():
            payload["context"] = context
        if self.cause is not None:
            payload["cause"] = error_message(self.cause)
        return payload

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.category.value}: {self.message}>"


# =============================================================================
# DEFINITION ERRORS
# =============================================================================


class ValidationError(HingeError):
    """
    Malformed plugin, flow or task definition.

    Raised before any state is mutated. Never retryable.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        errors: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        if self.errors:
            result["errors"] = list(self.errors)
        return result


class ConfigError(HingeError):
    """Runtime configuration is invalid. Surfaced once at boot."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class NotFoundError(HingeError):
    """Unknown plugin, task, operation, flow or logic point id."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False

    def __init__(self, kind: str, key: str, message: str | None = None, **kwargs: Any):
        self.kind = kind
        self.key = key
        super().__init__(message or f"{kind.capitalize()} not found: {key}", **kwargs)


# =============================================================================
# RUNTIME ERRORS
# =============================================================================


class InvalidTransitionError(HingeError):
    """Raised when an illegal state transition is attempted.

    The message names the current state and the legal targets so that the
    caller can see what would have been accepted.
    """

    default_category = ErrorCategory.STATE
    default_retryable = False

    def __init__(
        self,
        current: str,
        target: str,
        valid_targets: Iterable[str] = (),
        **kwargs: Any,
    ) -> None:
        self.current = current
        self.target = target
        self.valid_targets = list(valid_targets)
        allowed = ", ".join(self.valid_targets) or "none"
        super().__init__(
            f"Invalid state transition: {current} -> {target}. Valid transitions: {allowed}",
            **kwargs,
        )


class TimeoutError(HingeError, builtins.TimeoutError):
    """Operation exceeded its allotted time.

    Also a builtin :class:`TimeoutError`, so generic ``except TimeoutError``
    handlers keep working.
    """

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(
        self,
        message: str | None = None,
        *,
        timeout_ms: float | None = None,
        operation: str = "operation",
        **kwargs: Any,
    ):
        self.timeout_ms = timeout_ms
        self.operation = operation
        if message is None:
            message = f'Operation "{operation}" timed out'
            if timeout_ms is not None:
                message += f" after {timeout_ms:g}ms"
        super().__init__(message, **kwargs)


class DependencyError(HingeError):
    """Unresolved or circular plugin dependency."""

    default_category = ErrorCategory.DEPENDENCY
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        plugin: str | None = None,
        missing: list[str] | None = None,
        cycle: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.plugin = plugin
        self.missing = missing or []
        self.cycle = cycle or []
        if plugin:
            self.context.plugin = plugin


class ExecutionError(HingeError):
    """Wraps a failure raised by user-supplied code.

    Actions, hook handlers, plugin ``init``/``destroy`` and flow node
    executors all surface through this type; the original exception is
    kept as ``cause``.
    """

    default_category = ErrorCategory.EXECUTION
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, HingeError):
        return error.retryable
    return isinstance(error, (ConnectionError, builtins.TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, HingeError):
        return error.category
    if isinstance(error, builtins.TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    if isinstance(error, KeyError):
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.UNKNOWN


def error_message(error: BaseException) -> str:
    """Human-readable message for results and logs."""
    if isinstance(error, HingeError):
        return error.message
    return str(error) or error.__class__.__name__


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "HingeError",
    "ValidationError",
    "ConfigError",
    "NotFoundError",
    "InvalidTransitionError",
    "TimeoutError",
    "DependencyError",
    "ExecutionError",
    "is_retryable",
    "categorize_error",
    "error_message",
]
