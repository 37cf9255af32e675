"""
Operation result envelope.

Every management operation returns an :class:`OperationResult` instead of
raising. Engine exceptions are folded into a machine-readable ``code`` by
:meth:`OperationResult.from_exception` so the CLI (or any other transport)
can render them without knowing the error hierarchy.

Codes:
    NOT_FOUND          record missing or owned by another organization
    VALIDATION_FAILED  bad request fields
    INVALID_RULE       recurrence rule, window or run cap rejected
    STORE_UNAVAILABLE  schedule store failed (retryable)
    INTERNAL           anything else
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from ledger_recurring.core.errors import (
    ErrorCategory,
    InvalidRuleError,
    RecurringError,
    StoreUnavailableError,
    ValidationError,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class OperationError:
    """Structured error detail for failed operations.

    Attributes:
        code: Machine-readable code (``NOT_FOUND``, ``INVALID_RULE``, …).
        message: Human-readable description of the error.
        category: Optional :class:`ErrorCategory` for routing/alerting.
        details: Extra key/value context (field names, values, etc.).
        retryable: Whether the caller should retry the operation.
    """

    code: str
    message: str
    category: ErrorCategory | None = None
    details: dict[str, Any] = field(default_factory=dict)
    retryable: bool = False


@dataclass
class OperationResult(Generic[T]):
    """Envelope returned by every operation function.

    Attributes:
        success: ``True`` when the operation completed without error.
        data: The typed payload (``None`` on failure).
        error: Structured error (``None`` on success).
        warnings: Non-fatal messages collected during the operation.
        elapsed_ms: Wall-clock time the operation took.
        metadata: Additional key/value pairs for debugging or tracing.
    """

    success: bool
    data: T | None = None
    error: OperationError | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: T,
        *,
        warnings: list[str] | None = None,
        elapsed_ms: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> OperationResult[T]:
        """Create a successful result."""
        return cls(
            success=True,
            data=data,
            warnings=warnings or [],
            elapsed_ms=elapsed_ms,
            metadata=metadata or {},
        )

    @classmethod
    def fail(
        cls,
        code: str,
        message: str,
        *,
        category: ErrorCategory | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        elapsed_ms: float = 0.0,
    ) -> OperationResult[T]:
        """Create a failed result."""
        return cls(
            success=False,
            error=OperationError(
                code=code,
                message=message,
                category=category,
                details=details or {},
                retryable=retryable,
            ),
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def from_exception(cls, exc: Exception, *, elapsed_ms: float = 0.0) -> OperationResult[T]:
        """Map an engine exception to a failed result."""
        if isinstance(exc, RecurringError):
            details = {
                key: value
                for key, value in exc.to_dict().items()
                if key in ("field", "value", "context")
            }
            return cls.fail(
                _error_code(exc),
                exc.message,
                category=exc.category,
                details=details,
                retryable=exc.retryable,
                elapsed_ms=elapsed_ms,
            )
        return cls.fail(
            "INTERNAL",
            f"{type(exc).__name__}: {exc}",
            category=ErrorCategory.INTERNAL,
            elapsed_ms=elapsed_ms,
        )

    @property
    def code(self) -> str | None:
        return self.error.code if self.error else None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict (for JSON output)."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = _serialise(self.data)
        if self.error is not None:
            d["error"] = {
                "code": self.error.code,
                "message": self.error.message,
                "retryable": self.error.retryable,
            }
            if self.error.details:
                d["error"]["details"] = self.error.details
        if self.warnings:
            d["warnings"] = self.warnings
        if self.elapsed_ms:
            d["elapsed_ms"] = round(self.elapsed_ms, 2)
        if self.metadata:
            d["metadata"] = self.metadata
        return d


@dataclass
class PagedResult(OperationResult[list[T]]):
    """Paginated result for list operations.

    ``has_more`` is computed from *total*, *offset* and *limit*.
    """

    total: int = 0
    limit: int = 50
    offset: int = 0
    has_more: bool = False

    @classmethod
    def from_items(
        cls,
        items: list[T],
        total: int,
        *,
        limit: int = 50,
        offset: int = 0,
        elapsed_ms: float = 0.0,
    ) -> PagedResult[T]:
        return cls(
            success=True,
            data=items,
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + limit) < total,
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["total"] = self.total
        d["limit"] = self.limit
        d["offset"] = self.offset
        d["has_more"] = self.has_more
        return d


def _error_code(exc: RecurringError) -> str:
    if isinstance(exc, InvalidRuleError):
        return "INVALID_RULE"
    if isinstance(exc, ValidationError):
        return "VALIDATION_FAILED"
    if isinstance(exc, StoreUnavailableError):
        return "STORE_UNAVAILABLE"
    return "INTERNAL"


def _serialise(value: Any) -> Any:
    if isinstance(value, list):
        return [_serialise(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


# ------------------------------------------------------------------ #
# Timing helper
# ------------------------------------------------------------------ #


class _Timer:
    """Minimal stopwatch for timing operations."""

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000


def start_timer() -> _Timer:
    """Return a lightweight timer.  Use ``timer.elapsed_ms`` when done."""
    return _Timer()
