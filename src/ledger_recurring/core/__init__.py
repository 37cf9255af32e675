"""Ledger Recurring Core -- scheduling engine primitives.

Manifesto:
    A recurring schedule must fire once per occurrence: not zero times
    after a restart, not twice when two scheduler instances poll the same
    table. The core keeps the pieces that guarantee this small and
    separately testable, and keeps all I/O behind the ``Connection``
    protocol and an injected ``Clock``.

Architecture::

    Layer 1 -- Types & Errors
        errors.py          Structured error hierarchy (RecurringError, StoreUnavailableError)
        protocols.py       Connection protocol
        timestamps.py      ULID generation + canonical UTC ISO strings
        clock.py           Clock protocol (SystemClock, FrozenClock)

    Layer 2 -- Storage
        dialect.py         SQL placeholder dialect (SQLite)
        sqlite_conn.py     sqlite3 adapter for the Connection protocol
        schema.py          Table names + DDL, create_tables()
        models/            Dataclass row models

    Layer 3 -- Engine
        scheduling/        Rules, calculator, repository, leases, executor, service

    Layer 4 -- Ambient
        logging.py         structlog configuration + LogContext
        settings.py        pydantic-settings RecurringSettings

Tags:
    core, scheduling, primitives

Doc-Types:
    package-overview, architecture
"""
