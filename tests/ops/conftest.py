"""
Shared fixtures for ops-layer tests.

Operation contexts are bound to the root ``conn`` (in-memory store with all
tables) and the frozen ``clock``, acting for ``org-1`` as user ``alice``.
"""

import pytest

from ledger_recurring.ops.context import OperationContext

BALANCED_LINES = [
    {"account_code": "6100", "direction": "debit", "amount_config": {"field": "amount"}},
    {"account_code": "2100", "direction": "credit", "amount_config": {"field": "amount"}},
]

DAILY_9 = {"type": "daily", "time": "09:00"}


@pytest.fixture
def ctx(conn, clock):
    """Context for ``org-1``."""
    return OperationContext(conn=conn, organization_id="org-1", user="alice", clock=clock)


@pytest.fixture
def dry_ctx(conn, clock):
    """Dry-run context for ``org-1``."""
    return OperationContext(conn=conn, organization_id="org-1", user="alice", clock=clock, dry_run=True)


@pytest.fixture
def other_ctx(conn, clock):
    """Context for a second tenant sharing the same store."""
    return OperationContext(conn=conn, organization_id="org-2", user="bob", clock=clock)


@pytest.fixture
def no_org_ctx(conn, clock):
    return OperationContext(conn=conn, clock=clock)
