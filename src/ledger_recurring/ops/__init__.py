"""
Operations layer: management functions for ledger-recurring.

- All functions accept ``OperationContext`` as first argument
- All functions return ``OperationResult[T]`` (never raise)
- All functions are transport-agnostic (no CLI knowledge)
- Mutating functions support ``dry_run`` for safe previews

Usage::

    from ledger_recurring.ops import OperationContext
    from ledger_recurring.ops.recurring import create_recurring
    from ledger_recurring.ops.requests import CreateRecurringRequest

    ctx = OperationContext(conn=conn, organization_id="org-1", user="u-1")
    result = create_recurring(ctx, CreateRecurringRequest(
        template_id="RENT",
        schedule={"type": "monthly", "time": "06:00", "dayOfMonth": 1},
        timezone="Asia/Kolkata",
    ))
    assert result.success
"""

from ledger_recurring.ops.context import OperationContext
from ledger_recurring.ops.result import OperationError, OperationResult, PagedResult

__all__ = [
    "OperationContext",
    "OperationError",
    "OperationResult",
    "PagedResult",
]
