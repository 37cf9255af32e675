"""Tests for ScheduleRepository."""

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from ledger_recurring.core.errors import InvalidRuleError
from ledger_recurring.core.models.recurring import RunStatus, ScheduleRun
from ledger_recurring.core.scheduling import (
    LeaseManager,
    OccurrenceCalculator,
    RecurrenceRule,
    ScheduleCreate,
    ScheduleUpdate,
)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestScheduleCreate:
    """Test schedule creation."""

    def test_create_computes_next_run(self, make_schedule):
        """New schedules get their first occurrence after now."""
        schedule = make_schedule()
        assert schedule.id
        assert schedule.next_run == utc(2024, 1, 2, 9, 0)
        assert schedule.run_count == 0
        assert schedule.enabled is True
        assert schedule.status == "active"
        assert schedule.version == 1

    def test_create_round_trips_fields(self, make_schedule, template):
        schedule = make_schedule(
            RecurrenceRule(kind="weekly", day_of_week=5, time_of_day="17:30", timezone="Europe/Berlin"),
            payload={"amount": 250, "memo": "Friday"},
            end_at=utc(2024, 12, 31),
            max_runs=10,
            created_by="alice",
        )
        assert schedule.template_id == template.id
        assert schedule.rule.day_of_week == 5
        assert schedule.timezone == "Europe/Berlin"
        assert schedule.payload == {"amount": 250, "memo": "Friday"}
        assert schedule.end_at == utc(2024, 12, 31)
        assert schedule.max_runs == 10
        assert schedule.created_by == "alice"
        assert schedule.next_run == utc(2024, 1, 5, 16, 30)

    def test_create_with_start_at(self, make_schedule):
        schedule = make_schedule(start_at=utc(2024, 3, 1, 9, 0))
        assert schedule.next_run == utc(2024, 3, 1, 9, 0)

    def test_create_exhausted_when_window_has_no_occurrence(self, make_schedule):
        """No occurrence inside the window: stored disabled with no next run."""
        schedule = make_schedule(end_at=utc(2024, 1, 2, 8, 0))
        assert schedule.next_run is None
        assert schedule.enabled is False
        assert schedule.status == "exhausted"

    def test_create_paused(self, make_schedule):
        schedule = make_schedule(enabled=False)
        assert schedule.status == "paused"
        assert schedule.next_run == utc(2024, 1, 2, 9, 0)

    def test_inverted_window_rejected(self, make_schedule):
        with pytest.raises(InvalidRuleError, match="before start_at"):
            make_schedule(start_at=utc(2024, 2, 1), end_at=utc(2024, 1, 15))

    @pytest.mark.parametrize("max_runs", [0, -3])
    def test_non_positive_max_runs_rejected(self, make_schedule, max_runs):
        with pytest.raises(InvalidRuleError, match="max_runs"):
            make_schedule(max_runs=max_runs)

    def test_irrelevant_rule_fields_dropped(self, make_schedule):
        schedule = make_schedule(RecurrenceRule(kind="daily", time_of_day="09:00", day_of_month=12))
        assert schedule.rule.day_of_month is None

    def test_preview_writes_nothing(self, schedules, template):
        preview = schedules.preview(
            ScheduleCreate(organization_id="org-1", template_id=template.id, rule=RecurrenceRule(kind="daily"))
        )
        assert preview.id == ""
        assert preview.next_run == utc(2024, 1, 2, 0, 0)
        assert schedules.count() == 0

    def test_default_timezone_from_calculator(self, conn, clock, template):
        from ledger_recurring.core.scheduling import ScheduleRepository

        repo = ScheduleRepository(conn, clock=clock, calculator=OccurrenceCalculator("Asia/Kolkata"))
        schedule = repo.create(
            ScheduleCreate(
                organization_id="org-1",
                template_id=template.id,
                rule=RecurrenceRule(kind="daily", time_of_day="09:00"),
            )
        )
        assert schedule.next_run == utc(2024, 1, 2, 3, 30)


class TestScheduleRead:
    """Test get / list / count."""

    def test_get_scoped_by_organization(self, schedules, make_schedule):
        schedule = make_schedule()
        assert schedules.get(schedule.id, "org-1") is not None
        assert schedules.get(schedule.id, "org-2") is None
        assert schedules.get("missing") is None

    def test_list_and_count(self, schedules, make_schedule, clock):
        first = make_schedule()
        clock.advance(seconds=1)
        second = make_schedule(enabled=False)
        make_schedule(organization_id="org-2")

        assert [s.id for s in schedules.list_schedules("org-1")] == [first.id, second.id]
        assert schedules.count("org-1") == 2
        assert schedules.count("org-1", enabled=True) == 1
        assert [s.id for s in schedules.list_schedules("org-1", enabled=False)] == [second.id]
        assert schedules.count() == 3

    def test_list_pagination(self, schedules, make_schedule, clock):
        ids = []
        for _ in range(5):
            ids.append(make_schedule().id)
            clock.advance(seconds=1)
        page = schedules.list_schedules("org-1", limit=2, offset=2)
        assert [s.id for s in page] == ids[2:4]

    def test_due_schedules_most_overdue_first(self, schedules, make_schedule, clock):
        later = make_schedule(RecurrenceRule(kind="daily", time_of_day="12:00"))
        earlier = make_schedule(RecurrenceRule(kind="daily", time_of_day="11:00"))
        make_schedule(RecurrenceRule(kind="daily", time_of_day="23:00"))
        paused = make_schedule(RecurrenceRule(kind="daily", time_of_day="10:30"), enabled=False)

        clock.set(utc(2024, 1, 1, 13, 0))
        due = schedules.get_due_schedules(clock.now())
        assert [s.id for s in due] == [earlier.id, later.id]
        assert paused.id not in [s.id for s in due]
        assert len(schedules.get_due_schedules(clock.now(), limit=1)) == 1
        assert schedules.count_overdue(clock.now()) == 2


class TestScheduleUpdate:
    """Test user edits."""

    def test_rule_change_recomputes_next_run(self, schedules, make_schedule):
        schedule = make_schedule()
        updated = schedules.update(
            schedule.id, ScheduleUpdate(rule=RecurrenceRule(kind="daily", time_of_day="18:00"), updated_by="bob")
        )
        assert updated.next_run == utc(2024, 1, 1, 18, 0)
        assert updated.updated_by == "bob"
        assert updated.version == 2

    def test_payload_only_keeps_next_run(self, schedules, make_schedule, clock):
        schedule = make_schedule()
        clock.advance(hours=1)
        updated = schedules.update(schedule.id, ScheduleUpdate(payload={"amount": 999}))
        assert updated.payload == {"amount": 999}
        assert updated.next_run == schedule.next_run

    def test_edit_resets_failure_streak(self, schedules, make_schedule, conn):
        schedule = make_schedule()
        conn.execute("UPDATE recurring_events SET failure_count = 4, last_error = 'boom' WHERE id = ?", (schedule.id,))
        updated = schedules.update(schedule.id, ScheduleUpdate(end_at=utc(2025, 1, 1)))
        assert updated.failure_count == 0
        assert updated.last_error is None

    def test_clear_flags(self, schedules, make_schedule):
        schedule = make_schedule(end_at=utc(2024, 6, 1), max_runs=4)
        updated = schedules.update(schedule.id, ScheduleUpdate(clear_end_at=True, clear_max_runs=True))
        assert updated.end_at is None
        assert updated.max_runs is None

    def test_lowering_max_runs_below_count_exhausts(self, schedules, make_schedule, conn):
        schedule = make_schedule(max_runs=5)
        conn.execute("UPDATE recurring_events SET run_count = 3 WHERE id = ?", (schedule.id,))
        updated = schedules.update(schedule.id, ScheduleUpdate(max_runs=2))
        assert updated.status == "exhausted"

    def test_invalid_edit_rejected(self, schedules, make_schedule):
        schedule = make_schedule(start_at=utc(2024, 2, 1))
        with pytest.raises(InvalidRuleError):
            schedules.update(schedule.id, ScheduleUpdate(end_at=utc(2024, 1, 20)))
        assert schedules.get(schedule.id).end_at is None

    def test_update_missing(self, schedules):
        assert schedules.update("missing", ScheduleUpdate(max_runs=2)) is None

    def test_update_other_organization(self, schedules, make_schedule):
        schedule = make_schedule()
        assert schedules.update(schedule.id, ScheduleUpdate(max_runs=2), organization_id="org-2") is None


class TestPauseResumeDelete:
    """Test enable/disable and deletion."""

    def test_pause_keeps_next_run(self, schedules, make_schedule):
        schedule = make_schedule()
        paused = schedules.set_enabled(schedule.id, False)
        assert paused.enabled is False
        assert paused.next_run == schedule.next_run
        assert paused.status == "paused"

    def test_resume_recomputes_from_now(self, schedules, make_schedule, clock):
        """Occurrences missed while paused are not replayed."""
        schedule = make_schedule()
        schedules.set_enabled(schedule.id, False)
        clock.set(utc(2024, 1, 5, 12, 0))
        resumed = schedules.set_enabled(schedule.id, True)
        assert resumed.enabled is True
        assert resumed.next_run == utc(2024, 1, 6, 9, 0)

    def test_resume_exhausted_stays_exhausted(self, schedules, make_schedule, conn):
        schedule = make_schedule(max_runs=1)
        conn.execute(
            "UPDATE recurring_events SET run_count = 1, enabled = 0, next_run_at = NULL WHERE id = ?",
            (schedule.id,),
        )
        resumed = schedules.set_enabled(schedule.id, True)
        assert resumed.status == "exhausted"

    def test_set_enabled_missing(self, schedules):
        assert schedules.set_enabled("missing", False) is None

    def test_delete(self, schedules, make_schedule):
        schedule = make_schedule()
        assert schedules.delete(schedule.id, "org-2") is False
        assert schedules.delete(schedule.id, "org-1") is True
        assert schedules.get(schedule.id) is None
        assert schedules.delete(schedule.id) is False


class TestLeaseConditionedWrites:
    """commit / record_failure only apply while the lease is held."""

    def test_commit_requires_live_lease(self, schedules, due_schedule, clock, conn):
        leases = LeaseManager(conn, instance_id="worker-1", clock=clock)
        lease = leases.claim(due_schedule)
        transition = OccurrenceCalculator().advance(due_schedule, clock.now())

        assert schedules.commit(replace(lease, token="someone-else:abc"), transition, clock.now()) is False
        assert schedules.commit(lease, transition, clock.now()) is True

        stored = schedules.get(due_schedule.id)
        assert stored.run_count == 1
        assert stored.next_run == utc(2024, 1, 3, 9, 0)
        assert stored.lease_owner is None

    def test_commit_after_lease_expiry_rejected(self, schedules, due_schedule, clock, conn):
        leases = LeaseManager(conn, instance_id="worker-1", ttl_seconds=60, clock=clock)
        lease = leases.claim(due_schedule)
        clock.advance(seconds=61)
        transition = OccurrenceCalculator().advance(due_schedule, clock.now())
        assert schedules.commit(lease, transition, clock.now()) is False

    def test_commit_after_edit_rejected(self, schedules, due_schedule, clock, conn):
        leases = LeaseManager(conn, instance_id="worker-1", clock=clock)
        lease = leases.claim(due_schedule)
        schedules.update(due_schedule.id, ScheduleUpdate(rule=RecurrenceRule(kind="daily", time_of_day="20:00")))
        transition = OccurrenceCalculator().advance(due_schedule, clock.now())
        assert schedules.commit(lease, transition, clock.now()) is False

    def test_commit_after_edit_keeping_next_run_rejected(self, schedules, due_schedule, clock, conn):
        """An edit that leaves next_run alone still invalidates the claim."""
        leases = LeaseManager(conn, instance_id="worker-1", clock=clock)
        lease = leases.claim(due_schedule)
        edited = schedules.update(due_schedule.id, ScheduleUpdate(payload={"amount": 1}))
        assert edited.next_run == due_schedule.next_run

        transition = OccurrenceCalculator().advance(due_schedule, clock.now())
        assert schedules.commit(lease, transition, clock.now()) is False
        assert schedules.get(due_schedule.id).run_count == 0

    def test_record_failure_keeps_progress(self, schedules, due_schedule, clock, conn):
        leases = LeaseManager(conn, instance_id="worker-1", clock=clock)
        lease = leases.claim(due_schedule)
        assert schedules.record_failure(lease, "ledger closed", clock.now())

        stored = schedules.get(due_schedule.id)
        assert stored.failure_count == 1
        assert stored.last_error == "ledger closed"
        assert stored.run_count == 0
        assert stored.next_run == due_schedule.next_run
        assert stored.lease_owner is None

    def test_retire(self, schedules, make_schedule, clock):
        schedule = make_schedule()
        assert schedules.retire(schedule.id, clock.now()) is True
        assert schedules.get(schedule.id).status == "exhausted"
        assert schedules.retire(schedule.id, clock.now()) is False

    def test_record_failure_with_suspend_keeps_next_run(self, schedules, due_schedule, clock, conn):
        leases = LeaseManager(conn, instance_id="worker-1", clock=clock)
        lease = leases.claim(due_schedule)
        assert schedules.record_failure(lease, "ledger closed", clock.now(), suspend=True) is True

        stored = schedules.get(due_schedule.id)
        assert stored.status == "paused"
        assert stored.failure_count == 1
        assert stored.next_run == due_schedule.next_run
        assert stored.lease_owner is None

    def test_suspend_requires_live_lease(self, schedules, due_schedule, clock, conn):
        """A released lease cannot suspend a schedule another worker has since claimed."""
        first = LeaseManager(conn, instance_id="worker-1", clock=clock)
        lease = first.claim(due_schedule)
        first.release(due_schedule.id, lease.token)
        second = LeaseManager(conn, instance_id="worker-2", clock=clock)
        assert second.claim(due_schedule) is not None

        assert schedules.record_failure(lease, "ledger closed", clock.now(), suspend=True) is False
        assert schedules.get(due_schedule.id).status == "active"


class TestRunHistory:
    """Run history rows."""

    def test_runs_newest_first(self, schedules, make_schedule, clock):
        schedule = make_schedule()
        for status in (RunStatus.FAILED, RunStatus.TIMEOUT, RunStatus.COMPLETED):
            schedules.create_run(
                ScheduleRun(
                    schedule_id=schedule.id,
                    organization_id="org-1",
                    occurrence_at=schedule.next_run,
                    started_at=clock.now(),
                    status=status.value,
                )
            )
            clock.advance(minutes=1)

        runs = schedules.list_runs(schedule.id)
        assert [r.status for r in runs] == ["COMPLETED", "TIMEOUT", "FAILED"]
        assert [r.status for r in schedules.list_runs(schedule.id, status="FAILED")] == ["FAILED"]
        assert schedules.list_runs(schedule.id, organization_id="org-2") == []
        assert schedules.get_run(runs[0].id).occurrence_at == schedule.next_run

    def test_run_id_generated(self, schedules, make_schedule):
        schedule = make_schedule()
        run = schedules.create_run(ScheduleRun(schedule_id=schedule.id, organization_id="org-1"))
        assert run.id
        assert run.started_at is None
        assert schedules.get_run(run.id).started_at is not None
        assert schedules.get_run(run.id).retryable is None

    def test_run_error_classification(self, schedules, make_schedule):
        schedule = make_schedule()
        run = schedules.create_run(
            ScheduleRun(
                schedule_id=schedule.id,
                organization_id="org-1",
                status=RunStatus.FAILED.value,
                error="Missing required fields: amount",
                error_category="ORCHESTRATION",
                retryable=False,
            )
        )
        stored = schedules.get_run(run.id)
        assert stored.error_category == "ORCHESTRATION"
        assert stored.retryable is False
        assert stored.to_dict()["retryable"] is False

    def test_history_survives_delete(self, schedules, make_schedule):
        schedule = make_schedule()
        schedules.create_run(ScheduleRun(schedule_id=schedule.id, organization_id="org-1"))
        schedules.delete(schedule.id)
        assert len(schedules.list_runs(schedule.id)) == 1


class TestTimestamps:
    """Stored instants are canonical UTC strings."""

    def test_next_run_stored_canonically(self, make_schedule, conn):
        schedule = make_schedule(RecurrenceRule(kind="daily", time_of_day="09:00", timezone="Asia/Kolkata"))
        row = conn.execute("SELECT next_run_at FROM recurring_events WHERE id = ?", (schedule.id,)).fetchone()
        assert row[0] == "2024-01-02T03:30:00.000000+00:00"

    def test_offset_inputs_normalised(self, make_schedule):
        from datetime import timezone

        ist = timezone(timedelta(hours=5, minutes=30))
        schedule = make_schedule(end_at=datetime(2024, 6, 1, 5, 30, tzinfo=ist))
        assert schedule.end_at == utc(2024, 6, 1, 0, 0)
