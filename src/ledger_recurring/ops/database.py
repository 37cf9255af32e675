"""
Database operations.

Thin wrappers around ``ledger_recurring.core.schema`` for table creation and
row counts.
"""

from __future__ import annotations

from ledger_recurring.core.errors import store_errors
from ledger_recurring.core.logging import get_logger
from ledger_recurring.core.schema import TABLES, create_tables
from ledger_recurring.ops.context import OperationContext
from ledger_recurring.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def initialize_database(ctx: OperationContext) -> OperationResult[list[str]]:
    """Create all ledger-recurring tables (idempotent)."""
    timer = start_timer()
    table_names = list(TABLES.values())

    if ctx.dry_run:
        return OperationResult.ok(table_names, elapsed_ms=timer.elapsed_ms, metadata={"dry_run": True})

    try:
        with store_errors("initialize"):
            create_tables(ctx.conn)
    except Exception as exc:
        logger.exception("op_failed", op="initialize_database", error=str(exc))
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)

    logger.info("database.initialized", tables=table_names)
    return OperationResult.ok(table_names, elapsed_ms=timer.elapsed_ms)


def get_table_counts(ctx: OperationContext) -> OperationResult[dict[str, int]]:
    """Row count per table."""
    timer = start_timer()
    counts: dict[str, int] = {}
    try:
        with store_errors("count"):
            for table in TABLES.values():
                counts[table] = ctx.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    except Exception as exc:
        logger.exception("op_failed", op="get_table_counts", error=str(exc))
        return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
    return OperationResult.ok(counts, elapsed_ms=timer.elapsed_ms)
