"""Tests for DispatchExecutor."""

import asyncio

import pytest

from ledger_recurring.core.errors import (
    DispatchError,
    DispatchTimeoutError,
    ErrorCategory,
    PayloadRejectedError,
    TemplateNotFoundError,
)
from ledger_recurring.core.scheduling import DispatchExecutor
from ledger_recurring.events.delivery import DeliveryResult


class TestDispatch:
    """One delivery attempt per call."""

    @pytest.mark.asyncio
    async def test_success(self, templates, delivery, due_schedule):
        executor = DispatchExecutor(templates, delivery, timeout_seconds=1.0)
        outcome = await executor.dispatch(due_schedule)

        assert outcome.success is True
        assert outcome.instance_id == "inst-1"
        assert len(delivery.requests) == 1

    @pytest.mark.asyncio
    async def test_request_carries_scheduler_context(self, templates, delivery, template, due_schedule):
        executor = DispatchExecutor(templates, delivery)
        await executor.dispatch(due_schedule)

        request = delivery.requests[0]
        assert request.template.id == template.id
        assert request.payload == {"amount": 100}
        assert request.organization_id == "org-1"
        assert request.context["trigger_source"] == "schedule"
        assert request.context["role"] == "system"
        assert request.context["schedule_id"] == due_schedule.id
        assert request.context["occurrence_at"] == "2024-01-02T09:00:00.000000+00:00"

    @pytest.mark.asyncio
    async def test_payload_passed_through_untouched(self, templates, delivery, make_schedule):
        payload = {"amount": "1200.50", "lines": [{"memo": "x"}], "nested": {"a": None}}
        schedule = make_schedule(payload=payload)
        await DispatchExecutor(templates, delivery).dispatch(schedule)
        assert delivery.requests[0].payload == payload

    @pytest.mark.asyncio
    async def test_missing_required_fields(self, templates, delivery, make_schedule):
        """Required template fields are checked before delivery."""
        schedule = make_schedule(payload={"amount": ""})
        outcome = await DispatchExecutor(templates, delivery).dispatch(schedule)

        assert outcome.success is False
        assert outcome.reason == "Missing required fields: amount"
        assert isinstance(outcome.error, PayloadRejectedError)
        assert outcome.retryable is False
        assert outcome.error_category == ErrorCategory.ORCHESTRATION.value
        assert delivery.requests == []

    @pytest.mark.asyncio
    async def test_template_not_found(self, templates, delivery, make_schedule):
        schedule = make_schedule(template_id="NOPE")
        outcome = await DispatchExecutor(templates, delivery).dispatch(schedule)
        assert outcome.reason == "Template not found: NOPE"
        assert isinstance(outcome.error, TemplateNotFoundError)
        assert outcome.retryable is False
        assert outcome.error.context.template_id == "NOPE"

    @pytest.mark.asyncio
    async def test_inactive_template(self, templates, delivery, template, due_schedule):
        templates.deactivate(template.id, "org-1")
        outcome = await DispatchExecutor(templates, delivery).dispatch(due_schedule)
        assert outcome.reason == "Template is inactive: RENT"
        assert isinstance(outcome.error, TemplateNotFoundError)

    @pytest.mark.asyncio
    async def test_template_resolved_by_orchid(self, templates, delivery, make_schedule):
        schedule = make_schedule(template_id="RENT")
        outcome = await DispatchExecutor(templates, delivery).dispatch(schedule)
        assert outcome.success is True
        assert outcome.error is None
        assert outcome.retryable is None


class TestDispatchFailures:
    """Delivery failures become failed outcomes, never exceptions."""

    @pytest.mark.asyncio
    async def test_delivery_reports_failure(self, templates, delivery_factory, due_schedule):
        delivery = delivery_factory(DeliveryResult.failed("ledger closed", instance_id="inst-9"))
        outcome = await DispatchExecutor(templates, delivery).dispatch(due_schedule)

        assert outcome.success is False
        assert outcome.reason == "ledger closed"
        assert outcome.instance_id == "inst-9"
        assert type(outcome.error) is DispatchError
        assert outcome.retryable is True

    @pytest.mark.asyncio
    async def test_delivery_raises(self, templates, delivery_factory, due_schedule):
        delivery = delivery_factory(error=ConnectionError("downstream unreachable"))
        outcome = await DispatchExecutor(templates, delivery).dispatch(due_schedule)

        assert outcome.success is False
        assert outcome.reason == "downstream unreachable"
        assert outcome.timed_out is False
        assert outcome.retryable is True
        assert isinstance(outcome.error.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout(self, templates, delivery_factory, due_schedule):
        delivery = delivery_factory(delay=1.0)
        outcome = await DispatchExecutor(templates, delivery, timeout_seconds=0.05).dispatch(due_schedule)

        assert outcome.success is False
        assert outcome.timed_out is True
        assert "timed out" in outcome.reason
        assert isinstance(outcome.error, DispatchTimeoutError)
        assert outcome.retryable is True

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, templates, delivery_factory, due_schedule):
        delivery = delivery_factory(delay=1.0)
        task = asyncio.ensure_future(DispatchExecutor(templates, delivery).dispatch(due_schedule))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class TestBuildRequest:
    def test_missing_template_raises(self, templates, delivery, make_schedule):
        with pytest.raises(TemplateNotFoundError, match="NOPE"):
            DispatchExecutor(templates, delivery).build_request(make_schedule(template_id="NOPE"), None)

    def test_rejected_payload_raises(self, templates, delivery, make_schedule):
        with pytest.raises(PayloadRejectedError, match="amount"):
            DispatchExecutor(templates, delivery).build_request(make_schedule(payload={}), None)

    @pytest.mark.asyncio
    async def test_failure_carries_schedule_context(self, templates, delivery, make_schedule):
        schedule = make_schedule(payload={})
        outcome = await DispatchExecutor(templates, delivery).dispatch(schedule)

        context = outcome.error.context
        assert context.schedule_id == schedule.id
        assert context.organization_id == "org-1"
        assert context.occurrence_at == "2024-01-02T09:00:00.000000+00:00"
