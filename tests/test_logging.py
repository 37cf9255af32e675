"""
Tests for the logging module.

Tests verify:
- JSON output carries ECS-style field names and the service name
- Bound context reaches every event and is removed on exit
- DEBUG logs are suppressed at INFO level
"""

import asyncio
import io
import itertools
import json

import pytest

from ledger_recurring.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

_names = itertools.count()


def fresh_logger():
    """Loggers cache their configuration on first use; each test needs its own."""
    return get_logger(f"tests.logging.{next(_names)}")


def lines(stream: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


@pytest.fixture
def stream():
    buf = io.StringIO()
    configure_logging(level="INFO", json_format=True, service="ledger-test", stream=buf)
    yield buf
    clear_context()
    configure_logging(level="WARNING", json_format=False)


class TestConfigureLogging:
    """JSON rendering."""

    def test_json_fields(self, stream):
        fresh_logger().info("schedule.committed", schedule_id="s-1")

        (event,) = lines(stream)
        assert event["event"] == "schedule.committed"
        assert event["schedule_id"] == "s-1"
        assert event["log.level"] == "info"
        assert event["service.name"] == "ledger-test"
        assert "@timestamp" in event
        assert "level" not in event

    def test_debug_suppressed_at_info(self, stream):
        logger = fresh_logger()
        logger.debug("noise")
        logger.warning("schedule.suspended")

        assert [e["event"] for e in lines(stream)] == ["schedule.suspended"]

    def test_without_timestamp(self):
        buf = io.StringIO()
        configure_logging(level="INFO", json_format=True, add_timestamp=False, stream=buf)
        try:
            fresh_logger().info("tick")
            assert "@timestamp" not in lines(buf)[0]
        finally:
            configure_logging(level="WARNING", json_format=False)

    def test_console_format(self):
        buf = io.StringIO()
        configure_logging(level="INFO", json_format=False, stream=buf)
        try:
            fresh_logger().info("scheduler.started")
            assert "scheduler.started" in buf.getvalue()
        finally:
            configure_logging(level="WARNING", json_format=False)


class TestContext:
    """Context variables bound around a unit of work."""

    def test_bind_and_unbind(self, stream):
        logger = fresh_logger()
        bind_context(organization_id="org-1", schedule_id="s-1")
        logger.info("first")
        unbind_context("schedule_id")
        logger.info("second")

        first, second = lines(stream)
        assert first["organization_id"] == "org-1"
        assert first["schedule_id"] == "s-1"
        assert second["organization_id"] == "org-1"
        assert "schedule_id" not in second

    def test_log_context_scoped(self, stream):
        logger = fresh_logger()
        with LogContext(schedule_id="s-1"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = lines(stream)
        assert inside["schedule_id"] == "s-1"
        assert "schedule_id" not in outside

    @pytest.mark.asyncio
    async def test_async_tasks_do_not_leak(self, stream):
        logger = fresh_logger()

        async def work(schedule_id: str) -> None:
            async with LogContext(schedule_id=schedule_id):
                await asyncio.sleep(0)
                logger.info("dispatch", expected=schedule_id)

        await asyncio.gather(work("a"), work("b"))

        for event in lines(stream):
            assert event["schedule_id"] == event["expected"]
