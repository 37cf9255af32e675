"""Scheduler service - main orchestrator.

Manifesto:
    The SchedulerService combines backend (timing), repository (data),
    calculator (arithmetic), lease manager (safety) and executor (delivery)
    into one process-wide value with explicit ``start()`` / ``stop()``.
    Every occurrence moves through claim → dispatch → conditional commit,
    so a crash, a restart or a second instance can delay an occurrence but
    never fire it twice.

Tags:
    scheduling, orchestrator, beat-as-poller, service, lease

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE ARCHITECTURE                                               │
│                                                                               │
│   Dependencies:                                                               │
│   ┌───────────┐ ┌────────────┐ ┌────────────┐ ┌─────────────┐ ┌──────────┐   │
│   │ Backend   │ │ Repository │ │ Calculator │ │ LeaseManager│ │ Executor │   │
│   │ (timing)  │ │ (data)     │ │ (next run) │ │ (safety)    │ │ (deliver)│   │
│   └─────┬─────┘ └─────┬──────┘ └─────┬──────┘ └──────┬──────┘ └────┬─────┘   │
│         ▼             ▼              ▼               ▼             ▼         │
│   ┌────────────────────────────────────────────────────────────────────┐     │
│   │                            tick()                                  │     │
│   │                                                                    │     │
│   │   1. every N ticks: cleanup_expired() leases                       │     │
│   │   2. get_due_schedules(now)                                        │     │
│   │   3. per schedule, bounded by Semaphore(max_workers):              │     │
│   │      ├── exhausted?  → retire            (RETIRED)                 │     │
│   │      ├── claim()     → lost              (CLAIM_LOST)              │     │
│   │      ├── dispatch()  → ok   → commit()   (COMMITTED | DISCARDED)   │     │
│   │      │             → fail → record_failure()                       │     │
│   │      │                      [→ suspend after N failures] (FAILED)  │     │
│   │      └── run history row                                           │     │
│   └────────────────────────────────────────────────────────────────────┘     │
│                                                                               │
│   States:  Idle ──claim──► Claimed ──► Committed ──► Idle | Terminal          │
│                                   └──► Failed ────► Idle (retried next poll)  │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ledger_recurring.core.clock import Clock, SystemClock
from ledger_recurring.core.errors import StoreUnavailableError, ValidationError
from ledger_recurring.core.logging import LogContext, get_logger
from ledger_recurring.core.models.recurring import RunStatus, ScheduledEvent, ScheduleRun
from ledger_recurring.core.timestamps import to_iso8601

from .calculator import OccurrenceCalculator
from .executor import DispatchExecutor, DispatchOutcome
from .lease_manager import Lease, LeaseManager
from .protocol import BackendHealth, SchedulerBackend
from .repository import ScheduleRepository

logger = get_logger(__name__)


class ScheduleOutcome(str, Enum):
    """What happened to one schedule during a tick or trigger."""

    COMMITTED = "COMMITTED"
    FAILED = "FAILED"
    CLAIM_LOST = "CLAIM_LOST"
    DISCARDED = "DISCARDED"
    RETIRED = "RETIRED"
    SKIPPED = "SKIPPED"


@dataclass
class TickReport:
    """Per-tick counters."""

    started_at: datetime | None = None
    due: int = 0
    claimed: int = 0
    committed: int = 0
    failed: int = 0
    claim_lost: int = 0
    discarded: int = 0
    retired: int = 0
    suspended: int = 0
    outcomes: dict[str, ScheduleOutcome] = field(default_factory=dict)

    def record(self, schedule_id: str, outcome: ScheduleOutcome) -> None:
        self.outcomes[schedule_id] = outcome
        if outcome in (ScheduleOutcome.COMMITTED, ScheduleOutcome.FAILED, ScheduleOutcome.DISCARDED):
            self.claimed += 1
        if outcome is ScheduleOutcome.COMMITTED:
            self.committed += 1
        elif outcome is ScheduleOutcome.FAILED:
            self.failed += 1
        elif outcome is ScheduleOutcome.CLAIM_LOST:
            self.claim_lost += 1
        elif outcome is ScheduleOutcome.DISCARDED:
            self.discarded += 1
        elif outcome is ScheduleOutcome.RETIRED:
            self.retired += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "due": self.due,
            "claimed": self.claimed,
            "committed": self.committed,
            "failed": self.failed,
            "claim_lost": self.claim_lost,
            "discarded": self.discarded,
            "retired": self.retired,
            "suspended": self.suspended,
        }


@dataclass
class SchedulerStats:
    """Cumulative statistics for scheduler service."""

    tick_count: int = 0
    failed_ticks: int = 0
    schedules_claimed: int = 0
    schedules_committed: int = 0
    schedules_failed: int = 0
    schedules_claim_lost: int = 0
    schedules_discarded: int = 0
    schedules_retired: int = 0
    schedules_suspended: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def add(self, report: TickReport) -> None:
        self.schedules_claimed += report.claimed
        self.schedules_committed += report.committed
        self.schedules_failed += report.failed
        self.schedules_claim_lost += report.claim_lost
        self.schedules_discarded += report.discarded
        self.schedules_retired += report.retired
        self.schedules_suspended += report.suspended

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "failed_ticks": self.failed_ticks,
            "schedules_claimed": self.schedules_claimed,
            "schedules_committed": self.schedules_committed,
            "schedules_failed": self.schedules_failed,
            "schedules_claim_lost": self.schedules_claim_lost,
            "schedules_discarded": self.schedules_discarded,
            "schedules_retired": self.schedules_retired,
            "schedules_suspended": self.schedules_suspended,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for scheduler service."""

    healthy: bool
    backend: BackendHealth | dict
    schedules_enabled: int = 0
    schedules_overdue: int = 0
    active_leases: int = 0
    last_tick: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict() if isinstance(self.backend, BackendHealth) else self.backend,
            "schedules_enabled": self.schedules_enabled,
            "schedules_overdue": self.schedules_overdue,
            "active_leases": self.active_leases,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "stats": self.stats.to_dict(),
        }


class SchedulerService:
    """Main scheduler orchestrator - beat-as-poller pattern.

    Example:
        >>> service = SchedulerService(
        ...     backend=ThreadSchedulerBackend(),
        ...     repository=ScheduleRepository(conn, clock=clock),
        ...     lease_manager=LeaseManager(conn, clock=clock),
        ...     executor=DispatchExecutor(templates, EventDispatcher(conn)),
        ... )
        >>> service.start()
        >>> # Later...
        >>> service.stop()

        Tests drive ticks directly:

        >>> report = await service.tick()
        >>> report.committed
        1
    """

    def __init__(
        self,
        backend: SchedulerBackend,
        repository: ScheduleRepository,
        lease_manager: LeaseManager,
        executor: DispatchExecutor,
        *,
        calculator: OccurrenceCalculator | None = None,
        clock: Clock | None = None,
        interval_seconds: float = 10.0,
        max_workers: int = 8,
        max_consecutive_failures: int | None = 5,
        lease_cleanup_every: int = 6,
        batch_size: int | None = None,
    ) -> None:
        """Initialize scheduler service.

        Args:
            backend: Timing backend
            repository: Schedule store
            lease_manager: Per-schedule lease manager
            executor: Dispatch executor
            calculator: Occurrence calculator (defaults to the repository's)
            clock: Time source (defaults to the repository's)
            interval_seconds: Tick interval
            max_workers: Schedules processed concurrently within one tick
            max_consecutive_failures: Suspend a schedule after this many
                failed attempts in a row (None = never)
            lease_cleanup_every: Sweep expired leases every N ticks (0 = never)
            batch_size: Max due schedules fetched per tick (None = all)
        """
        self.backend = backend
        self.repository = repository
        self.lease_manager = lease_manager
        self.executor = executor
        self.calculator = calculator or repository.calculator
        self.clock: Clock = clock or repository.clock or SystemClock()
        self.interval = interval_seconds
        self.max_workers = max_workers
        self.max_consecutive_failures = max_consecutive_failures
        self.lease_cleanup_every = lease_cleanup_every
        self.batch_size = batch_size

        self._stats = SchedulerStats()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        """Start the backend tick loop."""
        if self._running:
            logger.warning("scheduler.already_running")
            return

        logger.info(
            "scheduler.starting",
            backend=self.backend.name,
            interval_seconds=self.interval,
            instance_id=self.lease_manager.instance_id,
            max_workers=self.max_workers,
        )
        self.backend.start(self.tick, self.interval)
        self._running = True

    def stop(self) -> None:
        """Stop the backend, letting the current tick finish."""
        if not self._running:
            return

        logger.info("scheduler.stopping")
        self.backend.stop()
        self._running = False
        logger.info("scheduler.stopped", **self._stats.to_dict())

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick Processing ===

    async def tick(self) -> TickReport:
        """Single scheduler tick: find due schedules and process them.

        Raises:
            StoreUnavailableError: The store failed; this tick is abandoned
                and the next one starts over.
        """
        now = self.clock.now()
        self._stats.tick_count += 1
        self._stats.last_tick = now
        report = TickReport(started_at=now)

        try:
            if self.lease_cleanup_every and self._stats.tick_count % self.lease_cleanup_every == 0:
                self.lease_manager.cleanup_expired()

            due = self.repository.get_due_schedules(now, limit=self.batch_size)
            report.due = len(due)
            if not due:
                logger.debug("scheduler.tick_idle")
                return report

            logger.info("scheduler.tick", due=len(due))
            semaphore = asyncio.Semaphore(self.max_workers)

            async def _bounded(schedule: ScheduledEvent) -> ScheduleOutcome:
                async with semaphore:
                    return await self.process_schedule(schedule, report=report)

            results = await asyncio.gather(*(_bounded(s) for s in due), return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    raise result
        except StoreUnavailableError as e:
            self._stats.failed_ticks += 1
            self._stats.last_error = str(e)
            logger.error("scheduler.tick_aborted", error=str(e), **report.to_dict())
            raise
        finally:
            self._stats.add(report)

        logger.info("scheduler.tick_complete", **report.to_dict())
        return report

    async def process_schedule(
        self,
        schedule: ScheduledEvent,
        *,
        report: TickReport | None = None,
        manual: bool = False,
    ) -> ScheduleOutcome:
        """Run one schedule through claim → dispatch → commit.

        Args:
            schedule: Schedule as read by the due query (or by ``trigger``)
            report: Tick report to update
            manual: Manual trigger (fires regardless of ``next_run``)
        """
        report = report or TickReport()
        async with LogContext(
            schedule_id=schedule.id,
            organization_id=schedule.organization_id,
            occurrence_at=to_iso8601(schedule.next_run),
        ):
            outcome = await self._process(schedule, report, manual)
        report.record(schedule.id, outcome)
        return outcome

    async def _process(self, schedule: ScheduledEvent, report: TickReport, manual: bool) -> ScheduleOutcome:
        now = self.clock.now()

        if self.calculator.is_exhausted(schedule):
            self.repository.retire(schedule.id, now)
            logger.info("schedule.retired", run_count=schedule.run_count, max_runs=schedule.max_runs)
            return ScheduleOutcome.RETIRED

        if not manual and not self.calculator.is_due(schedule, now):
            return ScheduleOutcome.SKIPPED

        lease = self.lease_manager.claim(schedule)
        if lease is None:
            logger.debug("schedule.claim_lost")
            return ScheduleOutcome.CLAIM_LOST
        logger.debug("schedule.claimed", lease_owner=lease.token)

        try:
            outcome = await self.executor.dispatch(schedule, lease.next_run)
        except Exception:
            self.lease_manager.release(schedule.id, lease.token)
            raise

        if outcome.success:
            return self._commit(schedule, lease, outcome, manual)
        return self._fail(schedule, lease, outcome, report)

    def _commit(
        self,
        schedule: ScheduledEvent,
        lease: Lease,
        outcome: DispatchOutcome,
        manual: bool,
    ) -> ScheduleOutcome:
        now = self.clock.now()
        if manual:
            transition = self.calculator.advance_manual(schedule, now)
        else:
            transition = self.calculator.advance(schedule, now)

        if not self.repository.commit(lease, transition, now):
            self.lease_manager.release(schedule.id, lease.token)
            self._record_run(schedule, lease, RunStatus.DISCARDED, outcome.instance_id,
                             error="Schedule changed or lease expired during dispatch")
            logger.warning("schedule.commit_discarded", instance_id=outcome.instance_id)
            return ScheduleOutcome.DISCARDED

        self._record_run(schedule, lease, RunStatus.COMPLETED, outcome.instance_id)
        logger.info(
            "schedule.committed",
            instance_id=outcome.instance_id,
            run_count=transition.run_count,
            next_run=to_iso8601(transition.next_run),
            exhausted=transition.exhausted,
        )
        return ScheduleOutcome.COMMITTED

    def _fail(
        self,
        schedule: ScheduledEvent,
        lease: Lease,
        outcome: DispatchOutcome,
        report: TickReport,
    ) -> ScheduleOutcome:
        now = self.clock.now()
        status = RunStatus.TIMEOUT if outcome.timed_out else RunStatus.FAILED
        reason = outcome.reason or "Dispatch failed"

        failures = lease.failure_count + 1
        limit = self.max_consecutive_failures
        suspend = limit is not None and failures >= limit

        if not self.repository.record_failure(lease, reason, now, suspend=suspend):
            self.lease_manager.release(schedule.id, lease.token)
            self._record_run(schedule, lease, RunStatus.DISCARDED, outcome.instance_id, error=reason,
                             error_category=outcome.error_category, retryable=outcome.retryable)
            logger.warning("schedule.failure_discarded", error=reason)
            return ScheduleOutcome.DISCARDED

        self._record_run(schedule, lease, status, outcome.instance_id, error=reason,
                         error_category=outcome.error_category, retryable=outcome.retryable)
        logger.warning("schedule.dispatch_failed", error=reason, timed_out=outcome.timed_out,
                       error_category=outcome.error_category, retryable=outcome.retryable,
                       failure_count=failures)

        if suspend:
            report.suspended += 1
            logger.error("schedule.suspended", failure_count=failures, last_error=reason)
        return ScheduleOutcome.FAILED

    def _record_run(
        self,
        schedule: ScheduledEvent,
        lease: Lease,
        status: RunStatus,
        instance_id: str | None,
        error: str | None = None,
        error_category: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        now = self.clock.now()
        self.repository.create_run(
            ScheduleRun(
                schedule_id=schedule.id,
                organization_id=schedule.organization_id,
                occurrence_at=lease.next_run,
                started_at=now,
                completed_at=now,
                status=status.value,
                lease_owner=lease.token,
                error=error,
                error_category=error_category,
                retryable=retryable,
                instance_id=instance_id,
            )
        )

    # === Manual Operations ===

    async def trigger(self, schedule_id: str, organization_id: str | None = None) -> ScheduleOutcome:
        """Fire a schedule now, regardless of its ``next_run``. Counts as a run.

        Raises:
            KeyError: If schedule not found
            ValidationError: If the schedule is paused or exhausted
        """
        schedule = self.repository.get(schedule_id, organization_id)
        if schedule is None:
            raise KeyError(f"Schedule not found: {schedule_id}")
        if not schedule.enabled or schedule.next_run is None:
            raise ValidationError(f"Schedule {schedule_id} is not active ({schedule.status})", field="enabled")

        outcome = await self.process_schedule(schedule, manual=True)
        logger.info("schedule.triggered", schedule_id=schedule_id, outcome=outcome.value)
        return outcome

    def pause(self, schedule_id: str) -> bool:
        """Pause a schedule. Returns False if not found."""
        if self.repository.set_enabled(schedule_id, False) is None:
            return False
        logger.info("schedule.paused", schedule_id=schedule_id)
        return True

    def resume(self, schedule_id: str) -> bool:
        """Resume a schedule, recomputing its next run from now. Returns False if not found."""
        if self.repository.set_enabled(schedule_id, True) is None:
            return False
        logger.info("schedule.resumed", schedule_id=schedule_id)
        return True

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        """Get scheduler health status."""
        backend_health = self.backend.health()
        now = self.clock.now()
        return SchedulerHealth(
            healthy=self._running and backend_health.get("healthy", False),
            backend=backend_health,
            schedules_enabled=self.repository.count(enabled=True),
            schedules_overdue=self.repository.count_overdue(now),
            active_leases=self.lease_manager.count_active(),
            last_tick=self._stats.last_tick,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()
