"""
Shared pytest fixtures for ledger-recurring tests.

This module provides:
- An in-memory schedule store with all tables created
- A frozen clock starting at 2024-01-01T10:00Z (a Monday)
- Repositories, a sample ``RENT`` template and schedule factories
- A recording ``EventDelivery`` fake and a scheduler service factory

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments.

    def test_something(make_schedule, make_service, clock):
        schedule = make_schedule()
        clock.set(schedule.next_run)
        ...
"""

import asyncio
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure the package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ledger_recurring.core.clock import FrozenClock
from ledger_recurring.core.models.events import ReferenceConfig
from ledger_recurring.core.schema import create_tables
from ledger_recurring.core.scheduling import (
    DispatchExecutor,
    LeaseManager,
    OccurrenceCalculator,
    RecurrenceRule,
    ScheduleCreate,
    ScheduleRepository,
    SchedulerService,
    ThreadSchedulerBackend,
)
from ledger_recurring.core.sqlite_conn import SqliteConnection
from ledger_recurring.events.delivery import DeliveryRequest, DeliveryResult
from ledger_recurring.events.templates import TemplateCreate, TemplateRepository

ORG = "org-1"
OTHER_ORG = "org-2"
T0 = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)

RENT_LINES = [
    {"account_code": "6100", "direction": "debit", "amount_config": {"field": "amount"}},
    {"account_code": "2100", "direction": "credit", "amount_config": {"field": "amount"}},
]


# =============================================================================
# Fakes
# =============================================================================


class RecordingDelivery:
    """``EventDelivery`` fake that records every request.

    Args:
        result: Result to return (defaults to success with a generated instance id)
        delay: Seconds to sleep inside ``deliver``
        error: Exception to raise instead of returning
        on_deliver: Hook called with the request before anything else happens
    """

    def __init__(
        self,
        result: DeliveryResult | None = None,
        *,
        delay: float = 0.0,
        error: Exception | None = None,
        on_deliver: Callable[[DeliveryRequest], Any] | None = None,
    ) -> None:
        self.result = result
        self.delay = delay
        self.error = error
        self.on_deliver = on_deliver
        self.requests: list[DeliveryRequest] = []

    async def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        self.requests.append(request)
        if self.on_deliver is not None:
            self.on_deliver(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result or DeliveryResult.ok(instance_id=f"inst-{len(self.requests)}")


# =============================================================================
# Store & clock
# =============================================================================


@pytest.fixture
def conn():
    """In-memory SQLite store with all tables."""
    connection = SqliteConnection(":memory:")
    create_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def schedules(conn, clock) -> ScheduleRepository:
    return ScheduleRepository(conn, clock=clock)


@pytest.fixture
def templates(conn, clock) -> TemplateRepository:
    return TemplateRepository(conn, clock=clock)


@pytest.fixture
def template(templates):
    """``RENT`` template requiring ``amount`` with a balanced journal rule."""
    return templates.create(
        TemplateCreate(
            organization_id=ORG,
            name="Monthly rent",
            orchid="RENT",
            reference_config=ReferenceConfig(prefix="RENT"),
            narration_config="Rent %month%",
            input_schema={"required": ["amount"]},
            lines_rule=list(RENT_LINES),
        )
    )


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_schedule(schedules, template):
    """Create a schedule for ``ORG`` (daily 09:00 UTC, amount 100 by default)."""

    def _make(rule: RecurrenceRule | None = None, **kwargs: Any):
        kwargs.setdefault("payload", {"amount": 100})
        kwargs.setdefault("organization_id", ORG)
        kwargs.setdefault("template_id", template.id)
        return schedules.create(
            ScheduleCreate(rule=rule or RecurrenceRule(kind="daily", time_of_day="09:00"), **kwargs)
        )

    return _make


@pytest.fixture
def delivery_factory():
    """The ``RecordingDelivery`` class, for tests that need a configured fake."""
    return RecordingDelivery


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def make_service(conn, clock, templates, delivery):
    """Build a ``SchedulerService`` wired to the shared store and clock."""

    def _make(
        delivery_: RecordingDelivery | None = None,
        *,
        instance_id: str = "worker-1",
        timeout_seconds: float | None = 5.0,
        max_consecutive_failures: int | None = 5,
        default_timezone: str = "UTC",
        connection=None,
    ) -> SchedulerService:
        store = connection or conn
        calculator = OccurrenceCalculator(default_timezone)
        return SchedulerService(
            backend=ThreadSchedulerBackend(),
            repository=ScheduleRepository(store, clock=clock, calculator=calculator),
            lease_manager=LeaseManager(store, instance_id=instance_id, ttl_seconds=300, clock=clock),
            executor=DispatchExecutor(
                TemplateRepository(store, clock=clock),
                delivery_ or delivery,
                timeout_seconds=timeout_seconds,
            ),
            calculator=calculator,
            clock=clock,
            interval_seconds=0.05,
            max_consecutive_failures=max_consecutive_failures,
        )

    return _make
