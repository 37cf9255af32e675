"""
ledger-recurring: recurring event scheduling and dispatch for a
multi-tenant accounting backend.

- ledger_recurring.core: rules, schedule store, leases, scheduler loop
- ledger_recurring.events: templates, event instances, delivery plugins
- ledger_recurring.ops: organization-scoped management operations
- ledger_recurring.cli: ``ledger-recurring`` command line
"""

__version__ = "0.1.0"
