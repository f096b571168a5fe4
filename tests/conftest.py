"""
Pytest fixtures for the payroll engine test suite.

Provides:
- Structured logging setup and per-test LogContext reset
- Log capture as parsed JSON records
- Deterministic clock, actors and compensation inputs
- In-memory and SQLite-backed repositories and audit sinks
- A wired PayrollRunService
"""

import json
import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO

import pytest

from payroll_config import clear_config_cache, get_active_config
from payroll_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from payroll_kernel.domain.clock import DeterministicClock
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payroll_modules.runs.models import Actor, CalculationChecklist, EmployeeCompensationInput
from payroll_modules.runs.service import PayrollRunService
from payroll_services.audit import InMemoryAuditSink, SqlAlchemyAuditSink
from payroll_services.persistence import InMemoryRunRepository, SqlAlchemyRunRepository

FIXED_NOW = datetime(2024, 7, 31, 17, 0, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    """Every test starts from the packaged statutory table."""
    monkeypatch.delenv("PAYROLL_STATUTORY_CONFIG", raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def captured_logs():
    """
    Capture payroll_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.calculate(...)
            logs = captured_logs()
            assert any(r["message"] == "run_transition_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payroll_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def statutory_config():
    return get_active_config()


@pytest.fixture
def preparer():
    return Actor("preparer-1", roles=("payroll_officer",))


@pytest.fixture
def approver():
    return Actor("approver-1", roles=("payroll_approver",))


@pytest.fixture
def checklist():
    return CalculationChecklist.all_confirmed()


def _make_input(employee_id="EMP-001", **amounts) -> EmployeeCompensationInput:
    amounts.setdefault("basic_salary", Decimal("1000000"))
    return EmployeeCompensationInput(employee_id=employee_id, **amounts)


@pytest.fixture
def make_input():
    """Factory for compensation inputs; unspecified amounts are zero."""
    return _make_input


@pytest.fixture
def scenario_input():
    """The single-employee reference scenario."""
    return _make_input(
        "EMP-001",
        basic_salary=Decimal("2500000"),
        housing_allowance=Decimal("375000"),
        transport_allowance=Decimal("100000"),
        loan_repayment=Decimal("100000"),
    )


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def memory_repository():
    return InMemoryRunRepository()


@pytest.fixture
def memory_audit():
    return InMemoryAuditSink()


@pytest.fixture
def sqlite_session_factory():
    """Fresh in-memory SQLite database with all payroll tables."""
    init_engine_from_url("sqlite://")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_repository(sqlite_session_factory):
    return SqlAlchemyRunRepository(sqlite_session_factory)


@pytest.fixture
def sql_audit(sqlite_session_factory):
    return SqlAlchemyAuditSink(sqlite_session_factory)


@pytest.fixture
def service(memory_repository, memory_audit, deterministic_clock, statutory_config):
    return PayrollRunService(
        memory_repository,
        memory_audit,
        config=statutory_config,
        clock=deterministic_clock,
    )


@pytest.fixture
def sql_service(sql_repository, sql_audit, deterministic_clock, statutory_config):
    return PayrollRunService(
        sql_repository,
        sql_audit,
        config=statutory_config,
        clock=deterministic_clock,
    )


@pytest.fixture
def draft_run(service, preparer):
    return service.create_run(
        "July 2024 Payroll", date(2024, 7, 1), date(2024, 7, 31), preparer,
    ).run
