"""Tests for ledger_recurring.ops.database: table creation and counts."""

from ledger_recurring.core.schema import TABLES
from ledger_recurring.core.sqlite_conn import SqliteConnection
from ledger_recurring.ops.context import OperationContext
from ledger_recurring.ops.database import get_table_counts, initialize_database


class TestInitializeDatabase:
    def test_creates_tables(self, clock):
        conn = SqliteConnection(":memory:")
        result = initialize_database(OperationContext(conn=conn, clock=clock))
        assert result.success is True
        assert result.data == list(TABLES.values())
        assert get_table_counts(OperationContext(conn=conn)).success is True

    def test_idempotent(self, ctx):
        assert initialize_database(ctx).success is True
        assert initialize_database(ctx).success is True

    def test_dry_run_writes_nothing(self):
        conn = SqliteConnection(":memory:")
        result = initialize_database(OperationContext(conn=conn, dry_run=True))
        assert result.success is True
        assert result.metadata == {"dry_run": True}
        assert get_table_counts(OperationContext(conn=conn)).code == "STORE_UNAVAILABLE"


class TestGetTableCounts:
    def test_counts(self, ctx, template, make_schedule):
        make_schedule()
        result = get_table_counts(ctx)
        assert result.success is True
        assert result.data["recurring_events"] == 1
        assert result.data["event_templates"] == 1
        assert result.data["recurring_event_runs"] == 0
        assert set(result.data) == set(TABLES.values())
