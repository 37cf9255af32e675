"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~ledger_recurring.core.protocols.Connection` protocol.

A bare ``sqlite3.Connection`` exposes ``execute()`` (returns a cursor)
but not ``fetchone()`` / ``fetchall()`` at the connection level.  This
adapter bridges the gap and opens the database with
``check_same_thread=False`` so the thread scheduler backend can tick on
its own thread.

Usage::

    from ledger_recurring.core.sqlite_conn import SqliteConnection

    conn = SqliteConnection(":memory:")
    conn.execute("CREATE TABLE t (id INTEGER)")
    conn.execute("INSERT INTO t VALUES (?)", (1,))
    conn.execute("SELECT * FROM t")
    row = conn.fetchone()
    conn.commit()
    conn.close()
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Any


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Each statement gets its own cursor, so a caller holding the result of
    ``execute()`` keeps its ``rowcount`` and rows even if another caller
    runs a statement in between. Statements are serialized through a lock.
    """

    def __init__(self, path: str | Path = ":memory:", *, row_factory: Any = None) -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        if row_factory is not None:
            self._conn.row_factory = row_factory
        self._cursor = self._conn.cursor()
        self._lock = threading.RLock()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple | list = ()) -> Any:
        with self._lock:
            self._cursor = self._conn.execute(sql, tuple(params))
            return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        with self._lock:
            self._cursor = self._conn.executemany(sql, params)
            return self._cursor

    def executescript(self, script: str) -> None:
        with self._lock:
            self._conn.executescript(script)

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        with self._lock:
            self._conn.commit()

    def rollback(self) -> None:
        with self._lock:
            self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"
