"""Core primitives shared by every conductor layer."""

from conductor.core.errors import (
    AuthError,
    ConductorError,
    ConfigError,
    DefinitionError,
    DuplicateTriggerError,
    ErrorCategory,
    ErrorContext,
    NotFoundError,
    ScheduleError,
    TaskActionError,
    TaskTimeoutError,
    categorize_error,
    is_retryable,
)
from conductor.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from conductor.core.settings import ConductorSettings, get_settings

__all__ = [
    # errors
    "AuthError",
    "ConductorError",
    "ConfigError",
    "DefinitionError",
    "DuplicateTriggerError",
    "ErrorCategory",
    "ErrorContext",
    "NotFoundError",
    "ScheduleError",
    "TaskActionError",
    "TaskTimeoutError",
    "categorize_error",
    "is_retryable",
    # logging
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # settings
    "ConductorSettings",
    "get_settings",
]
