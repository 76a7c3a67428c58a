"""
Structured error types for conductor.

Every failure the orchestration layer can produce is a typed ``ConductorError``
carrying a category, an explicit retry flag, structured context and an
optional chained cause. The task runner reads ``retryable`` to decide whether
to try again; the HTTP layer reads the class to pick a status code.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure domain
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry workflow/task/job metadata for logging
    - **Error Chaining:** Original exceptions preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      ConductorError                          │
        │        (category, retryable, context, cause)                 │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  DefinitionError   TaskActionError    TaskTimeoutError       │
        │  (DEFINITION)      (ACTION, per-inst) (TIMEOUT, retryable)   │
        │                                                              │
        │  ScheduleError     NotFoundError      DuplicateTriggerError  │
        │  (SCHEDULE)        (NOT_FOUND)        (DUPLICATE)            │
        │                                                              │
        │  AuthError         ConfigError                               │
        │  (AUTH)            (CONFIG)                                  │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> err = TaskActionError("endpoint returned 503", retryable=True)
    >>> err.retryable
    True
    >>> DefinitionError("cycle detected").retryable
    False
    >>> err.with_context(task="send-email").context.task
    'send-email'

Guardrails:
    ❌ DON'T: Raise bare Exception from a task action wrapper
    ✅ DO: Wrap it as TaskActionError(..., cause=exc)

    ❌ DON'T: Mark DefinitionError retryable
    ✅ DO: Let the class default decide

Tags:
    error-handling, exception-hierarchy, retry-logic, conductor

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories used for routing, HTTP mapping and retry defaults."""

    DEFINITION = "DEFINITION"     # Malformed workflow / task graph
    ACTION = "ACTION"             # External automation call failed
    TIMEOUT = "TIMEOUT"           # Per-task hard timeout
    SCHEDULE = "SCHEDULE"         # Bad cron expression, duplicate job id
    NOT_FOUND = "NOT_FOUND"       # Unknown job / workflow
    DUPLICATE = "DUPLICATE"       # Job already running
    AUTH = "AUTH"                 # Trigger secret mismatch
    CONFIG = "CONFIG"             # Invalid settings / jobs file
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are serialized. Anything that doesn't fit a typed
    field goes into ``metadata``.
    """

    workflow: str | None = None
    task: str | None = None
    job_id: str | None = None
    execution_id: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["workflow", "task", "job_id", "execution_id", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ConductorError(Exception):
    """
    Base exception for all conductor errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override ``retryable`` per instance (an HTTP 503 from an action is
    retryable, a 400 is not).

    Examples:
        >>> error = ConductorError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
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
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ConductorError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TaskActionError("Failed").with_context(task="notify", url=url)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
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

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DEFINITION / EXECUTION ERRORS
# =============================================================================


class DefinitionError(ConductorError):
    """Workflow definition is malformed (duplicate ids, unknown deps, cycles)."""

    default_category = ErrorCategory.DEFINITION
    default_retryable = False


class TaskActionError(ConductorError):
    """An external automation call failed.

    Retryability is decided per instance by whoever classifies the failure.
    """

    default_category = ErrorCategory.ACTION
    default_retryable = False


class TaskTimeoutError(ConductorError):
    """A task attempt exceeded its hard timeout."""

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(self, timeout: float, elapsed: float, operation: str = "task", **kwargs: Any):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        super().__init__(
            f"{operation} timed out after {elapsed:.2f}s (limit: {timeout:.2f}s)",
            **kwargs,
        )


# =============================================================================
# SCHEDULER ERRORS
# =============================================================================


class ScheduleError(ConductorError):
    """Schedule configuration error (bad cron expression, duplicate job id)."""

    default_category = ErrorCategory.SCHEDULE
    default_retryable = False


class NotFoundError(ConductorError):
    """Referenced job or workflow does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class DuplicateTriggerError(ConductorError):
    """Job is already running; the second trigger is rejected."""

    default_category = ErrorCategory.DUPLICATE
    default_retryable = False

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job already running: {job_id}")


# =============================================================================
# TRIGGER / CONFIG ERRORS
# =============================================================================


class AuthError(ConductorError):
    """Caller failed the trigger secret check."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class ConfigError(ConductorError):
    """Invalid settings or jobs file."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ConductorError):
        return error.retryable
    # Connection-level failures are usually transient
    return isinstance(error, (ConnectionError, BrokenPipeError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ConductorError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ConductorError",
    "DefinitionError",
    "TaskActionError",
    "TaskTimeoutError",
    "ScheduleError",
    "NotFoundError",
    "DuplicateTriggerError",
    "AuthError",
    "ConfigError",
    "is_retryable",
    "categorize_error",
]
