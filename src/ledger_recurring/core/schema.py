"""
Schedule store tables.

Defines table names and DDL for recurring schedules, their run history,
and the event collaborator tables (templates, instances, reference
counters).

Manifesto:
    The lease lives on the schedule row itself. Claiming, committing and
    releasing are single conditional UPDATEs against ``recurring_events``,
    so there is no second lock table that can drift out of sync with the
    schedule it protects.

Architecture:
    ::

        Table Registry (TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ recurring_events      → schedule + rule + progress + lease │
        │ recurring_event_runs  → one row per dispatch attempt       │
        │ event_templates       → per-organization event templates   │
        │ event_instances       → dispatched events (reference, ...) │
        │ event_counters        → incrementor reference sequences    │
        └────────────────────────────────────────────────────────────┘

        Time columns are TEXT in canonical UTC ISO 8601 with microseconds
        (see core.timestamps.to_iso8601) so ``next_run_at <= ?`` compares
        correctly as strings.

Examples:
    >>> from ledger_recurring.core.schema import TABLES, create_tables
    >>> TABLES["schedules"]
    'recurring_events'
    >>> create_tables(conn)

Guardrails:
    ❌ DON'T: Write timestamps with ``datetime('now')`` defaults
    ✅ DO: Pass ``to_iso8601(clock.now())`` from the repository

Tags:
    schema, ddl, sqlite, recurring, lease

Doc-Types:
    - API Reference
    - Schema Documentation
"""

from ledger_recurring.core.protocols import Connection

# =============================================================================
# TABLE NAMES
# =============================================================================

TABLES = {
    "schedules": "recurring_events",
    "schedule_runs": "recurring_event_runs",
    "templates": "event_templates",
    "instances": "event_instances",
    "counters": "event_counters",
}

# =============================================================================
# DDL STATEMENTS
# =============================================================================

DDL = {
    # =========================================================================
    # RECURRING_EVENTS: schedule definition, progress and lease
    #
    # enabled = 0 with next_run_at set      -> paused or suspended
    # enabled = 0 with next_run_at NULL     -> exhausted (terminal)
    # lease_owner / lease_expires_at        -> current claim, if any
    # =========================================================================
    "schedules": """
        CREATE TABLE IF NOT EXISTS recurring_events (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            template_id TEXT NOT NULL,
            payload TEXT,                       -- opaque JSON

            -- Rule
            kind TEXT NOT NULL,                 -- daily, weekly, monthly, calendar_monthly
            time_of_day TEXT,                   -- HH:MM
            day_of_week INTEGER,                -- 0 = Sunday
            day_of_month INTEGER,
            timezone TEXT,

            -- Window
            start_at TEXT,
            end_at TEXT,

            -- Progress
            next_run_at TEXT,
            last_run_at TEXT,
            run_count INTEGER NOT NULL DEFAULT 0,
            max_runs INTEGER,
            enabled INTEGER NOT NULL DEFAULT 1,

            -- Failures
            failure_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,

            -- Lease
            lease_owner TEXT,
            lease_expires_at TEXT,

            -- Audit
            created_by TEXT,
            updated_by TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1
        )
    """,
    "schedules_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_recurring_events_due
        ON recurring_events(enabled, next_run_at)
    """,
    "schedules_idx_org": """
        CREATE INDEX IF NOT EXISTS idx_recurring_events_org
        ON recurring_events(organization_id)
    """,
    "schedules_idx_lease": """
        CREATE INDEX IF NOT EXISTS idx_recurring_events_lease
        ON recurring_events(lease_expires_at)
    """,
    # =========================================================================
    # RECURRING_EVENT_RUNS: dispatch attempt history (kept after deletes)
    # =========================================================================
    "schedule_runs": """
        CREATE TABLE IF NOT EXISTS recurring_event_runs (
            id TEXT PRIMARY KEY,
            schedule_id TEXT NOT NULL,
            organization_id TEXT NOT NULL,
            occurrence_at TEXT,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            status TEXT NOT NULL,               -- COMPLETED, FAILED, TIMEOUT, DISCARDED
            lease_owner TEXT,
            error TEXT,
            error_category TEXT,                -- ErrorCategory of a failed attempt
            retryable INTEGER,
            instance_id TEXT
        )
    """,
    "schedule_runs_idx_schedule": """
        CREATE INDEX IF NOT EXISTS idx_recurring_event_runs_schedule
        ON recurring_event_runs(schedule_id, started_at)
    """,
    # =========================================================================
    # EVENT_TEMPLATES: orchid is upper-cased and unique per organization
    # =========================================================================
    "templates": """
        CREATE TABLE IF NOT EXISTS event_templates (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            name TEXT NOT NULL,
            orchid TEXT NOT NULL,
            reference_config TEXT,              -- JSON: {prefix, serial_method, length}
            narration_config TEXT,
            input_schema TEXT,                  -- JSON
            plugins TEXT,                       -- JSON list
            lines_rule TEXT,                    -- JSON list
            is_system_generated INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (organization_id, orchid)
        )
    """,
    # =========================================================================
    # EVENT_INSTANCES: one row per dispatched event
    # =========================================================================
    "instances": """
        CREATE TABLE IF NOT EXISTS event_instances (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            template_id TEXT NOT NULL,
            type TEXT NOT NULL,                 -- template orchid
            reference TEXT NOT NULL,
            payload TEXT,
            status TEXT NOT NULL,               -- PENDING, PROCESSED, FAILED
            processed_at TEXT,
            error_message TEXT,
            results TEXT,                       -- JSON list of plugin results
            context TEXT,                       -- JSON dispatch context
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "instances_idx_org": """
        CREATE INDEX IF NOT EXISTS idx_event_instances_org
        ON event_instances(organization_id, created_at)
    """,
    "instances_idx_reference": """
        CREATE INDEX IF NOT EXISTS idx_event_instances_reference
        ON event_instances(reference)
    """,
    # =========================================================================
    # EVENT_COUNTERS: key = "<organization_id>:<orchid>"
    # =========================================================================
    "counters": """
        CREATE TABLE IF NOT EXISTS event_counters (
            key TEXT PRIMARY KEY,
            seq INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT
        )
    """,
}


def create_tables(conn: Connection) -> None:
    """
    Create all tables and indexes.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in DDL.items():
        conn.execute(ddl)
    conn.commit()
