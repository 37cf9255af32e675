"""SQL dialect abstraction for the schedule store.

Repositories build SQL through a ``Dialect`` instead of hard-coding
placeholders, so the lease and commit statements are written once and a
different DB-API driver only needs its own dialect object.

Manifesto:
    The lease protocol is a handful of conditional UPDATEs. Those
    statements must not fork per backend; only placeholders and a few
    DDL fragments differ.

Architecture::

    Repository Code:
    ┌────────────────────────────────────────────────────────────────┐
    │  sql = f"UPDATE t SET a = {d.placeholder(0)} WHERE id = ..."   │
    │  conn.execute(sql, params)                                     │
    └────────────────────────────────────────────────────────────────┘
                              │
                              ▼
                        ┌──────────┐
                        │ SQLite   │
                        │ ?, ?, ?  │
                        └──────────┘

Examples:
    >>> from ledger_recurring.core.dialect import SQLiteDialect
    >>> SQLiteDialect().placeholders(3)
    '?, ?, ?'

Tags:
    sql, dialect, sqlite, portability

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL generation contract used by repositories."""

    @property
    def name(self) -> str:
        """Dialect name (``sqlite``)."""
        ...

    def placeholder(self, index: int) -> str:
        """Return the placeholder for a 0-based parameter position."""
        ...

    def placeholders(self, count: int) -> str:
        """Return ``count`` comma-separated placeholders."""
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT that silently skips rows violating a unique key."""
        ...


class SQLiteDialect:
    """SQLite dialect: ``?`` placeholders."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({ph})"
