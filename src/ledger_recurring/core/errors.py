"""
Structured error types for the recurring event engine.

Every failure the engine can produce is a ``RecurringError`` subclass that
carries a category, a retry flag, and structured context (schedule,
organization, template, occurrence). The scheduler loop uses these flags to
decide whether a failure aborts a tick, stays local to one schedule, or is
rejected at the management boundary.

Manifesto:
    - **Typed Error Hierarchy:** Rule errors, store errors and dispatch errors
      are different types with different propagation rules
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry schedule/tenant metadata for logging
    - **Error Chaining:** Driver and delivery exceptions are kept as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       RecurringError                             │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError        ValidationError      ConfigError         │
        │  (retryable=True)      (VALIDATION)         (CONFIG)            │
        │       │                     │                    │               │
        │  StoreUnavailableError InvalidRuleError     InvalidConfigError  │
        │  (DATABASE)                                                      │
        │                                                                  │
        │  DispatchError (ORCHESTRATION, retryable)                        │
        │       │                                                          │
        │  DispatchTimeoutError  TemplateNotFoundError                     │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    - ``InvalidRuleError`` is raised synchronously at create/update time and
      never reaches the scheduler loop.
    - ``DispatchError`` is recovered inside the loop: the schedule stays due.
    - ``StoreUnavailableError`` aborts the current tick only.
    - Losing a lease race is a normal outcome, not an error
      (``ScheduleOutcome.CLAIM_LOST``).

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    scheduling, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Attributes:
        NETWORK: Delivery collaborator unreachable
        DATABASE: Schedule store unreachable or failing
        VALIDATION: Malformed recurrence rules, bad requests
        CONFIG: Invalid settings
        ORCHESTRATION: Dispatch and scheduler loop failures
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"
    DATABASE = "DATABASE"

    # Input errors (never retryable)
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"

    # Application errors
    ORCHESTRATION = "ORCHESTRATION"

    # Internal errors
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover the identifiers the scheduler logs on every event;
    anything else goes into ``metadata``. ``to_dict()`` drops unset fields.

    Examples:
        >>> ctx = ErrorContext(schedule_id="01HX...", organization_id="org-1")
        >>> ctx.to_dict()
        {'schedule_id': '01HX...', 'organization_id': 'org-1'}

    Attributes:
        schedule_id: Recurring schedule the error relates to
        organization_id: Tenant owning the schedule
        template_id: Event template referenced by the schedule
        occurrence_at: ISO timestamp of the occurrence being processed
        lease_owner: Lease token held while the error occurred
        metadata: Additional key-value pairs
    """

    schedule_id: str | None = None
    organization_id: str | None = None
    template_id: str | None = None
    occurrence_at: str | None = None
    lease_owner: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["schedule_id", "organization_id", "template_id",
                    "occurrence_at", "lease_owner"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RecurringError(Exception):
    """
    Base exception for all recurring engine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass what differs from the defaults.

    Examples:
        >>> error = RecurringError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = DispatchError("Delivery refused").with_context(
        ...     schedule_id="01HX...", organization_id="org-1"
        ... )
        >>> error.context.organization_id
        'org-1'

    Guardrails:
        ❌ DON'T: Raise plain Exception from scheduler code
        ✅ DO: Use the matching RecurringError subclass

        ❌ DON'T: Forget to chain the underlying exception
        ✅ DO: Pass it as cause= when wrapping driver/delivery errors
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RecurringError:
        """
        Add context to this error (fluent API).

        Usage:
            raise DispatchError("Delivery failed").with_context(
                schedule_id=schedule.id,
                organization_id=schedule.organization_id,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
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
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.context:
            context_dict = self.context.to_dict()
            if context_dict:
                result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(RecurringError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class StoreUnavailableError(TransientError):
    """
    Schedule store unreachable or a statement failed at the driver level.

    The scheduler aborts the current tick and tries again on the next one.
    Lease acquisition and state commits are single statements, so a failure
    never leaves a half-applied transition behind.
    """

    default_category = ErrorCategory.DATABASE


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(RecurringError):
    """
    Input validation error.

    Never retryable - the input must be fixed.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class InvalidRuleError(ValidationError):
    """Recurrence rule is malformed or internally inconsistent."""

    pass


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(RecurringError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# DISPATCH ERRORS
# =============================================================================


class DispatchError(RecurringError):
    """
    Delivery of a due occurrence failed.

    Retryable: the occurrence stays due and is retried on a later poll.
    """

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = True


class DispatchTimeoutError(DispatchError):
    """Delivery did not finish within the dispatch timeout."""

    pass


class TemplateNotFoundError(DispatchError):
    """Referenced event template is missing or inactive."""

    default_retryable = False


class PayloadRejectedError(DispatchError):
    """Schedule payload does not satisfy the template's required fields."""

    default_retryable = False


# Driver exceptions translated into StoreUnavailableError.
DRIVER_ERRORS: tuple[type[BaseException], ...] = (sqlite3.Error, OSError)


@contextmanager
def store_errors(operation: str, **context: Any) -> Iterator[None]:
    """
    Translate driver failures inside the block into ``StoreUnavailableError``.

    Example:
        >>> with store_errors("claim", schedule_id=schedule.id):
        ...     cursor = conn.execute(sql, params)
    """
    try:
        yield
    except DRIVER_ERRORS as exc:
        raise StoreUnavailableError(
            f"Schedule store {operation} failed: {exc}",
            context=ErrorContext(**context) if context else None,
            cause=exc,
        ) from exc


def is_retryable(error: Exception) -> bool:
    """
    Check whether an error should be retried.

    Non-RecurringError exceptions are treated as not retryable.
    """
    if isinstance(error, RecurringError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RecurringError",
    "TransientError",
    "StoreUnavailableError",
    "ValidationError",
    "InvalidRuleError",
    "ConfigError",
    "InvalidConfigError",
    "DispatchError",
    "DispatchTimeoutError",
    "TemplateNotFoundError",
    "PayloadRejectedError",
    "DRIVER_ERRORS",
    "store_errors",
    "is_retryable",
]
