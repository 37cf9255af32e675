"""Pytest fixtures for scheduling tests."""

from datetime import timedelta

import pytest


@pytest.fixture
def due_schedule(make_schedule, clock):
    """A daily 09:00 UTC schedule with the clock moved just past its next run."""
    schedule = make_schedule()
    clock.set(schedule.next_run + timedelta(seconds=1))
    return schedule
