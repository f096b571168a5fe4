"""
Tests for structured payroll logging.

Formatter and LogContext behaviour is checked on hand-built records; the
lifecycle tests check that the context bound by PayrollRunService and
PayrollLineCalculator reaches the records emitted during real operations.
"""

import json
import logging
import sys
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from payroll_kernel.exceptions import GuardNotSatisfiedError, ImmutableStateError
from payroll_kernel.logging_config import (
    LOGGER_NAMESPACE,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from payroll_modules.runs.models import CalculationChecklist, PayrollRunStatus


def _format(message="run_transition_committed", exc_info=None, **extra) -> dict:
    record = logging.LogRecord(
        f"{LOGGER_NAMESPACE}.modules.runs.service", logging.INFO, __file__, 1,
        message, (), exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(StructuredFormatter().format(record))


def _messages(records, message):
    return [r for r in records if r["message"] == message]


@pytest.fixture
def fresh_logging():
    """Start without the session handler; put it back afterwards."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


class TestStructuredFormatter:

    def test_envelope(self):
        record = _format()

        assert record["level"] == "INFO"
        assert record["logger"] == "payroll_kernel.modules.runs.service"
        assert record["message"] == "run_transition_committed"
        assert datetime.fromisoformat(record["ts"]).tzinfo is not None

    def test_payroll_values_serialized(self):
        run_id = uuid4()

        record = _format(
            run_id=run_id,
            total_net_salary=Decimal("1946250"),
            to_status=PayrollRunStatus.CALCULATED,
            calculated_at=datetime(2024, 7, 31, 17, 0, tzinfo=UTC),
        )

        assert record["run_id"] == str(run_id)
        assert record["total_net_salary"] == "1946250"
        assert record["to_status"] == "calculated"
        assert record["calculated_at"] == "2024-07-31T17:00:00+00:00"

    def test_bound_context_wins_over_extra(self):
        with LogContext.bind(run_id="run-bound"):
            record = _format(run_id="run-extra", action="verify")

        assert record["run_id"] == "run-bound"
        assert record["action"] == "verify"

    def test_payroll_error_fields(self):
        try:
            raise ImmutableStateError("run-1", "approved", "set_inputs")
        except ImmutableStateError:
            record = _format("payroll_run_inputs_immutable", exc_info=sys.exc_info())

        assert record["exc_code"] == "IMMUTABLE_STATE"
        assert record["exc_type"] == "ImmutableStateError"
        assert record["exc_status"] == "approved"
        assert record["exc_operation"] == "set_inputs"
        assert "ImmutableStateError" in record["traceback"]

    def test_foreign_error_has_no_code(self):
        try:
            raise ConnectionError("audit backend unreachable")
        except ConnectionError:
            record = _format("payroll_run_audit_failed", exc_info=sys.exc_info())

        assert record["exc_type"] == "ConnectionError"
        assert record["exc_message"] == "audit backend unreachable"
        assert "exc_code" not in record


class TestLogContext:

    def test_bind_nests_and_unwinds(self):
        with LogContext.bind(run_id="run-1", actor_id="preparer-1"):
            with LogContext.bind(employee_id="EMP-001"):
                assert LogContext.get_all() == {
                    "run_id": "run-1",
                    "actor_id": "preparer-1",
                    "employee_id": "EMP-001",
                }
            assert "employee_id" not in LogContext.get_all()
        assert LogContext.get_all() == {}

    def test_bind_unwinds_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(run_id="run-1"):
                raise RuntimeError("calculation failed")

        assert LogContext.get_all() == {}

    def test_values_stored_as_strings_and_none_skipped(self):
        run_id = uuid4()
        LogContext.set(run_id=run_id, actor_id=None)

        assert LogContext.get_all() == {"run_id": str(run_id)}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="payroll_period"):
            LogContext.set(payroll_period="2024-07")

    def test_clear(self):
        LogContext.set(correlation_id="req-9", run_id="run-1")
        LogContext.clear()

        assert LogContext.get_all() == {}


class TestConfigureLogging:

    def test_idempotent(self, fresh_logging):
        stream = StringIO()
        first = configure_logging(stream=stream)
        second = configure_logging(stream=StringIO())

        get_logger("services.history").info("history_search")

        assert second is first
        assert json.loads(stream.getvalue())["logger"] == "payroll_kernel.services.history"

    def test_level_applies_to_namespace(self, fresh_logging):
        stream = StringIO()
        configure_logging(level="WARNING", stream=stream)

        get_logger("engines.tax").debug("paye_calculated")
        get_logger("modules.runs.service").warning("payroll_run_audit_failed")

        lines = stream.getvalue().strip().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["payroll_run_audit_failed"]

    def test_reset_keeps_foreign_handlers(self, fresh_logging):
        namespace = logging.getLogger(LOGGER_NAMESPACE)
        foreign = logging.NullHandler()
        namespace.addHandler(foreign)
        before = list(namespace.handlers)
        try:
            configure_logging(stream=StringIO())
            reset_logging()

            assert namespace.handlers == before
        finally:
            namespace.removeHandler(foreign)


class TestLifecycleContext:

    def test_transition_carries_run_and_actor(self, service, draft_run, preparer, captured_logs):
        service.cancel(draft_run.id, preparer, reason="duplicate")

        (committed,) = _messages(captured_logs(), "run_transition_committed")
        assert committed["run_id"] == str(draft_run.id)
        assert committed["actor_id"] == "preparer-1"
        assert committed["to_status"] == "cancelled"

    def test_creation_carries_new_run_id(self, service, preparer, captured_logs):
        run = service.create_run("August 2024", date(2024, 8, 1), date(2024, 8, 31), preparer).run

        (created,) = _messages(captured_logs(), "payroll_run_created")
        assert created["run_id"] == str(run.id)
        assert created["actor_id"] == "preparer-1"
        assert created["pay_month"] == "2024-08"

    def test_calculation_tags_each_employee(
        self, service, draft_run, preparer, checklist, make_input, captured_logs,
    ):
        service.set_inputs(draft_run.id, [make_input("EMP-001"), make_input("EMP-002")], preparer)

        service.calculate(draft_run.id, checklist, preparer)

        records = captured_logs()
        lines = _messages(records, "payroll_line_computed")
        assert [r["employee_id"] for r in lines] == ["EMP-001", "EMP-002"]
        assert {r["run_id"] for r in lines} == {str(draft_run.id)}
        paye = _messages(records, "paye_calculated")
        assert [r["employee_id"] for r in paye] == ["EMP-001", "EMP-002"]
        (committed,) = [
            r for r in _messages(records, "run_transition_committed") if r["action"] == "calculate"
        ]
        assert "employee_id" not in committed

    def test_rejected_transition_logged_with_run(self, service, draft_run, preparer, captured_logs):
        with pytest.raises(GuardNotSatisfiedError):
            service.calculate(draft_run.id, CalculationChecklist(), preparer)

        (rejected,) = _messages(captured_logs(), "workflow_transition")
        assert rejected["run_id"] == str(draft_run.id)
        assert rejected["actor_id"] == "preparer-1"
        assert rejected["outcome"] == "guard_failed"

    def test_context_released_after_operation(self, service, draft_run, preparer):
        service.cancel(draft_run.id, preparer)

        assert LogContext.get_all() == {}
