"""Tests for ledger_recurring.core.dialect."""

from ledger_recurring.core.dialect import Dialect, SQLiteDialect


class TestSQLiteDialect:
    def test_sqlite(self):
        dialect = SQLiteDialect()
        assert dialect.name == "sqlite"
        assert dialect.placeholder(4) == "?"
        assert dialect.placeholders(3) == "?, ?, ?"
        assert dialect.insert_or_ignore("event_counters", ["key", "seq"]) == (
            "INSERT OR IGNORE INTO event_counters (key, seq) VALUES (?, ?)"
        )

    def test_satisfies_protocol(self):
        assert isinstance(SQLiteDialect(), Dialect)
