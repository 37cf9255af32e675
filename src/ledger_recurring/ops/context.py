"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument. The context carries the database connection, the tenant the caller
acts for, caller identity, the dry-run flag and the time source the
repositories should use.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from ledger_recurring.core.clock import Clock, SystemClock
from ledger_recurring.core.protocols import Connection


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        conn: Database connection satisfying :class:`Connection`.
        organization_id: Tenant every read and write is scoped to.
        user: Acting user, recorded as ``created_by`` / ``updated_by``.
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request: ``"cli"``, ``"sdk"`` or ``"scheduler"``.
        dry_run: When ``True``, mutating operations validate and return a
            preview without writing.
        default_timezone: Zone applied to rules that carry none.
        clock: Time source for audit columns and next-run computation.
        metadata: Arbitrary key/value pairs forwarded to logging.
    """

    conn: Connection
    organization_id: str | None = None
    user: str | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    dry_run: bool = False
    default_timezone: str = "UTC"
    clock: Clock = field(default_factory=SystemClock)
    metadata: dict[str, Any] = field(default_factory=dict)
