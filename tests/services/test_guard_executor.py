import pytest

from payroll_kernel.domain.workflow import Guard
from payroll_modules.runs.models import CalculationChecklist
from payroll_services.workflow_executor import GuardExecutor, default_guard_executor


@pytest.fixture
def executor():
    return default_guard_executor()


def test_inputs_present_requires_at_least_one(executor):
    guard = Guard(name="inputs_present", description="")
    assert executor.evaluate(guard, {"input_count": 1}) is True
    assert executor.evaluate(guard, {"input_count": 0}) is False


def test_inputs_present_without_context(executor):
    guard = Guard(name="inputs_present", description="")
    assert executor.evaluate(guard, None) is False


def test_checklist_complete(executor):
    guard = Guard(name="checklist_complete", description="")
    assert executor.evaluate(guard, {"checklist": CalculationChecklist.all_confirmed()}) is True
    assert executor.evaluate(guard, {"checklist": CalculationChecklist()}) is False


def test_checklist_missing_from_context(executor):
    guard = Guard(name="checklist_complete", description="")
    assert executor.evaluate(guard, {}) is False
    assert executor.explain(guard, {}) == "no checklist supplied"


def test_checklist_explanation_names_unconfirmed_items(executor):
    guard = Guard(name="checklist_complete", description="")
    checklist = CalculationChecklist(attendance_confirmed=True, leave_recorded=True)

    assert executor.explain(guard, {"checklist": checklist}) == (
        "unconfirmed items: loans_reconciled, new_hires_captured"
    )


def test_context_may_be_an_object(executor):
    class Context:
        input_count = 3

    assert executor.evaluate(Guard(name="inputs_present", description=""), Context()) is True


def test_unknown_guard_blocks(executor, captured_logs):
    guard = Guard(name="no_such_guard", description="Never registered")

    assert executor.evaluate(guard, {}) is False
    assert executor.explain(guard, {}) == "Never registered"
    assert any(r["message"] == "guard_no_evaluator" for r in captured_logs())


def test_raising_evaluator_blocks():
    executor = GuardExecutor()

    def broken(context):
        raise KeyError("input_count")

    executor.register("broken", broken)

    assert executor.evaluate(Guard(name="broken", description=""), {}) is False
