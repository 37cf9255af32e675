"""
Canonical protocol definitions for ledger-recurring.

Every module that talks to the schedule store depends on the
``Connection`` shape defined here, never on a concrete driver.

Manifesto:
    Protocols define contracts without inheritance. They enable:
    - **Decoupling:** Repositories depend on shape, not implementation
    - **Testability:** An in-memory SQLite connection satisfies the contract
    - **Portability:** Repository code never names a concrete driver

Architecture:
    ::

        protocols.py (YOU ARE HERE)
        └── Connection          : sync DB protocol (sqlite3, psycopg, etc.)

    Consumers:
        core/scheduling/repository.py, core/scheduling/lease_manager.py,
        events/templates.py, events/dispatcher.py, core/schema.py

Guardrails:
    ❌ DON'T: Duplicate Connection(Protocol) in other modules
    ✅ DO: Import from ledger_recurring.core.protocols

    ❌ DON'T: Add async methods to the Connection protocol
    ✅ DO: Keep store access sync; the scheduler awaits only delivery

Tags:
    protocol, connection, database, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    ``execute`` must return a cursor-like object exposing ``rowcount``,
    ``fetchone()`` and ``fetchall()``. The lease protocol relies on
    ``rowcount`` to learn whether a conditional UPDATE matched.

    Architecture:
        ::

            Connection Protocol:
            ┌────────────────────────────────────────────────────────┐
            │ execute(sql, params)   → Execute single statement      │
            │ executemany(sql, list) → Execute for multiple params   │
            │ fetchone()             → Get one result row            │
            │ fetchall()             → Get all result rows           │
            │ commit()               → Commit transaction            │
            │ rollback()             → Rollback transaction          │
            └────────────────────────────────────────────────────────┘

    Examples:
        >>> cursor = conn.execute(
        ...     "UPDATE recurring_events SET enabled = 0 WHERE id = ?", ("01HX",)
        ... )
        >>> cursor.rowcount
        1
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters. SYNC."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets. SYNC."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query. SYNC."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query. SYNC."""
        ...

    def commit(self) -> None:
        """Commit current transaction. SYNC."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction. SYNC."""
        ...
