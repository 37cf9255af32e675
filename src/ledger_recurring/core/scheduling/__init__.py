"""Recurring schedule engine.

Manifesto:
    Recurrence arithmetic, persistence, leasing, delivery and the polling
    loop are separate pieces with narrow contracts. Each can be tested on
    its own with an in-memory database and a frozen clock; together they
    give single-fire delivery per occurrence across restarts and across
    scheduler instances.

Modules:
    rules           RecurrenceRule / RecurrenceKind / next_occurrence
    calculator      OccurrenceCalculator / ScheduleTransition
    repository      ScheduleRepository / ScheduleCreate / ScheduleUpdate
    lease_manager   LeaseManager / Lease
    executor        DispatchExecutor / DispatchOutcome
    protocol        SchedulerBackend / BackendHealth
    thread_backend  ThreadSchedulerBackend
    service         SchedulerService / ScheduleOutcome / TickReport

Tags:
    scheduling, recurrence, lease, beat-as-poller

Doc-Types:
    package-overview, module-index
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .calculator import OccurrenceCalculator, ScheduleTransition
from .executor import DispatchExecutor, DispatchOutcome
from .lease_manager import Lease, LeaseManager
from .protocol import BackendHealth, SchedulerBackend
from .repository import ScheduleCreate, ScheduleRepository, ScheduleUpdate
from .rules import RecurrenceKind, RecurrenceRule, next_occurrence
from .service import (
    ScheduleOutcome,
    SchedulerHealth,
    SchedulerService,
    SchedulerStats,
    TickReport,
)
from .thread_backend import ThreadSchedulerBackend

if TYPE_CHECKING:
    from ledger_recurring.core.clock import Clock
    from ledger_recurring.core.dialect import Dialect
    from ledger_recurring.core.protocols import Connection
    from ledger_recurring.core.settings import RecurringSettings
    from ledger_recurring.events.delivery import EventDelivery

__all__ = [
    # Rules
    "RecurrenceKind",
    "RecurrenceRule",
    "next_occurrence",
    # Calculator
    "OccurrenceCalculator",
    "ScheduleTransition",
    # Repository
    "ScheduleRepository",
    "ScheduleCreate",
    "ScheduleUpdate",
    # Leases
    "LeaseManager",
    "Lease",
    # Executor
    "DispatchExecutor",
    "DispatchOutcome",
    # Backends
    "SchedulerBackend",
    "BackendHealth",
    "ThreadSchedulerBackend",
    # Service
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    "ScheduleOutcome",
    "TickReport",
    "create_scheduler",
]


def create_scheduler(
    conn: Connection,
    settings: RecurringSettings | None = None,
    delivery: EventDelivery | None = None,
    *,
    clock: Clock | None = None,
    dialect: Dialect | None = None,
    backend: SchedulerBackend | None = None,
) -> SchedulerService:
    """Factory function to create a complete scheduler service.

    This is the recommended way to create a scheduler with all components
    wired to the same connection, clock and settings.

    Args:
        conn: Database connection
        settings: Engine settings (defaults to ``get_settings()``)
        delivery: Event delivery collaborator (defaults to ``EventDispatcher``)
        clock: Time source (defaults to the system clock)
        dialect: SQL dialect (defaults to SQLite)
        backend: Timing backend (defaults to ``ThreadSchedulerBackend``)

    Example:
        >>> scheduler = create_scheduler(conn)
        >>> scheduler.start()
    """
    from ledger_recurring.core.clock import SystemClock
    from ledger_recurring.core.settings import get_settings
    from ledger_recurring.events.dispatcher import EventDispatcher
    from ledger_recurring.events.templates import TemplateRepository

    settings = settings or get_settings()
    clock = clock or SystemClock()
    calculator = OccurrenceCalculator(settings.default_timezone)

    repository = ScheduleRepository(conn, dialect, clock=clock, calculator=calculator)
    lease_manager = LeaseManager(
        conn,
        dialect,
        instance_id=settings.instance_id,
        ttl_seconds=settings.lease_ttl_seconds,
        clock=clock,
    )
    templates = TemplateRepository(conn, dialect, clock=clock)
    executor = DispatchExecutor(
        templates,
        delivery or EventDispatcher(conn, dialect, clock=clock),
        timeout_seconds=settings.dispatch_timeout_seconds,
    )
    return SchedulerService(
        backend=backend or ThreadSchedulerBackend(),
        repository=repository,
        lease_manager=lease_manager,
        executor=executor,
        calculator=calculator,
        clock=clock,
        interval_seconds=settings.poll_interval_seconds,
        max_workers=settings.max_workers,
        max_consecutive_failures=settings.max_consecutive_failures,
        lease_cleanup_every=settings.lease_cleanup_every,
    )
