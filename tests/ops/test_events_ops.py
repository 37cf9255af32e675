"""Tests for ledger_recurring.ops.events: dispatched event history."""

import pytest

from ledger_recurring.events.delivery import DeliveryRequest
from ledger_recurring.events.dispatcher import EventDispatcher
from ledger_recurring.ops.events import get_event, list_events
from ledger_recurring.ops.requests import GetEventRequest, ListEventsRequest


@pytest.fixture
def deliver(conn, clock, template):
    """Deliver one ``RENT`` event for ``org-1`` and return the result."""
    dispatcher = EventDispatcher(conn, clock=clock)

    async def _deliver(payload=None):
        result = await dispatcher.deliver(
            DeliveryRequest(
                template=template,
                payload={"amount": 100} if payload is None else payload,
                organization_id="org-1",
                context={"trigger_source": "schedule"},
            )
        )
        clock.advance(seconds=1)
        return result

    return _deliver


class TestListEvents:
    @pytest.mark.asyncio
    async def test_newest_first(self, ctx, deliver):
        first = await deliver()
        second = await deliver()

        result = list_events(ctx)
        assert result.success is True
        assert result.total == 2
        assert [e.id for e in result.data] == [second.instance_id, first.instance_id]
        assert result.data[0].reference == "RENT-000002"

    @pytest.mark.asyncio
    async def test_filter_by_status(self, ctx, deliver):
        await deliver()
        failed = await deliver({})

        result = list_events(ctx, ListEventsRequest(status="failed"))
        assert [e.id for e in result.data] == [failed.instance_id]

    @pytest.mark.asyncio
    async def test_filter_by_template_orchid(self, ctx, deliver):
        await deliver()
        assert list_events(ctx, ListEventsRequest(template_id="rent")).total == 1

    def test_unknown_template(self, ctx):
        result = list_events(ctx, ListEventsRequest(template_id="NOPE"))
        assert result.success is False
        assert result.error.code == "NOT_FOUND"

    def test_unknown_status(self, ctx):
        result = list_events(ctx, ListEventsRequest(status="DONE"))
        assert result.success is False
        assert result.error.code == "VALIDATION_FAILED"
        assert "PROCESSED" in result.error.message

    @pytest.mark.asyncio
    async def test_other_organization_sees_nothing(self, other_ctx, deliver):
        await deliver()
        assert list_events(other_ctx).total == 0

    def test_requires_org(self, no_org_ctx):
        assert list_events(no_org_ctx).error.code == "VALIDATION_FAILED"


class TestGetEvent:
    @pytest.mark.asyncio
    async def test_found(self, ctx, deliver):
        delivered = await deliver()
        result = get_event(ctx, GetEventRequest(instance_id=delivered.instance_id))

        assert result.success is True
        assert result.data.status.value == "PROCESSED"
        assert result.data.context == {"trigger_source": "schedule"}
        assert result.data.results[0].plugin == "journal"

    @pytest.mark.asyncio
    async def test_other_organization(self, other_ctx, deliver):
        delivered = await deliver()
        result = get_event(other_ctx, GetEventRequest(instance_id=delivered.instance_id))
        assert result.error.code == "NOT_FOUND"

    def test_missing(self, ctx):
        assert get_event(ctx, GetEventRequest(instance_id="missing")).error.code == "NOT_FOUND"

    def test_requires_id(self, ctx):
        assert get_event(ctx, GetEventRequest()).error.code == "VALIDATION_FAILED"
