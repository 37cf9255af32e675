"""Tests for ledger_recurring.ops.result: OperationResult, PagedResult, OperationError."""

import sqlite3

from ledger_recurring.core.errors import (
    ErrorCategory,
    InvalidRuleError,
    RecurringError,
    StoreUnavailableError,
    ValidationError,
)
from ledger_recurring.ops.result import OperationError, OperationResult, PagedResult, start_timer


# ------------------------------------------------------------------ #
# OperationResult
# ------------------------------------------------------------------ #


class TestOperationResultOk:
    def test_basic(self):
        r = OperationResult.ok({"key": "value"})
        assert r.success is True
        assert r.data == {"key": "value"}
        assert r.error is None
        assert r.code is None
        assert r.warnings == []

    def test_with_warnings(self):
        r = OperationResult.ok("done", warnings=["careful"])
        assert r.warnings == ["careful"]

    def test_to_dict(self):
        r = OperationResult.ok([1, 2], warnings=["w"], elapsed_ms=1.234, metadata={"dry_run": True})
        d = r.to_dict()
        assert d == {
            "success": True,
            "data": [1, 2],
            "warnings": ["w"],
            "elapsed_ms": 1.23,
            "metadata": {"dry_run": True},
        }

    def test_to_dict_serialises_models(self):
        class Model:
            def to_dict(self):
                return {"id": "m-1"}

        assert OperationResult.ok([Model()]).to_dict()["data"] == [{"id": "m-1"}]

    def test_none_data_omitted(self):
        assert "data" not in OperationResult.ok(None).to_dict()


class TestOperationResultFail:
    def test_basic(self):
        r = OperationResult.fail("NOT_FOUND", "missing")
        assert r.success is False
        assert r.data is None
        assert r.code == "NOT_FOUND"
        assert r.error == OperationError(code="NOT_FOUND", message="missing")

    def test_to_dict(self):
        r = OperationResult.fail("VALIDATION_FAILED", "bad", details={"field": "x"})
        assert r.to_dict() == {
            "success": False,
            "error": {
                "code": "VALIDATION_FAILED",
                "message": "bad",
                "retryable": False,
                "details": {"field": "x"},
            },
        }


class TestFromException:
    def test_invalid_rule(self):
        r = OperationResult.from_exception(InvalidRuleError("bad rule", field="day_of_week", value=9))
        assert r.code == "INVALID_RULE"
        assert r.error.category is ErrorCategory.VALIDATION
        assert r.error.details == {"field": "day_of_week", "value": "9"}

    def test_validation(self):
        r = OperationResult.from_exception(ValidationError("bad input"))
        assert r.code == "VALIDATION_FAILED"
        assert r.error.retryable is False

    def test_store_unavailable(self):
        exc = StoreUnavailableError("db gone", cause=sqlite3.OperationalError("locked"))
        r = OperationResult.from_exception(exc.with_context(schedule_id="s-1"))
        assert r.code == "STORE_UNAVAILABLE"
        assert r.error.retryable is True
        assert r.error.details == {"context": {"schedule_id": "s-1"}}

    def test_other_recurring_error(self):
        assert OperationResult.from_exception(RecurringError("odd")).code == "INTERNAL"

    def test_plain_exception(self):
        r = OperationResult.from_exception(KeyError("k"))
        assert r.code == "INTERNAL"
        assert r.error.message == "KeyError: 'k'"
        assert r.error.category is ErrorCategory.INTERNAL


# ------------------------------------------------------------------ #
# PagedResult
# ------------------------------------------------------------------ #


class TestPagedResult:
    def test_has_more(self):
        r = PagedResult.from_items([1, 2], total=5, limit=2, offset=0)
        assert r.has_more is True
        assert r.success is True

    def test_last_page(self):
        r = PagedResult.from_items([5], total=5, limit=2, offset=4)
        assert r.has_more is False

    def test_to_dict(self):
        d = PagedResult.from_items(["a"], total=1, limit=10).to_dict()
        assert d["data"] == ["a"]
        assert d["total"] == 1
        assert d["limit"] == 10
        assert d["offset"] == 0
        assert d["has_more"] is False


class TestTimer:
    def test_elapsed_non_negative(self):
        assert start_timer().elapsed_ms >= 0
