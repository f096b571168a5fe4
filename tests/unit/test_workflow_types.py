"""Unit tests for the workflow value objects and the payroll run workflow."""

import pytest

from payroll_kernel.domain.workflow import Guard, Transition, Workflow
from payroll_modules.runs.workflows import PAYROLL_RUN_WORKFLOW, build_payroll_run_workflow


def _workflow(**overrides):
    fields = dict(
        name="w",
        description="",
        initial_state="a",
        states=("a", "b", "c"),
        transitions=(Transition("a", "b", "go"), Transition("b", "c", "finish")),
        terminal_states=("c",),
    )
    fields.update(overrides)
    return Workflow(**fields)


class TestWorkflowConstruction:

    def test_valid(self):
        wf = _workflow()
        assert wf.find("a", "go").to_state == "b"

    def test_initial_state_must_be_declared(self):
        with pytest.raises(ValueError):
            _workflow(initial_state="z")

    def test_transition_states_must_be_declared(self):
        with pytest.raises(ValueError):
            _workflow(transitions=(Transition("a", "z", "go"),))

    def test_terminal_state_cannot_have_exits(self):
        with pytest.raises(ValueError):
            _workflow(transitions=(Transition("c", "a", "restart"),))

    def test_guard_is_descriptive(self):
        guard = Guard("inputs_present", "At least one input")
        assert Transition("a", "b", "go", guards=(guard,)).guards[0].name == "inputs_present"


class TestPayrollRunWorkflow:

    def test_terminal_states(self):
        assert PAYROLL_RUN_WORKFLOW.is_terminal("processed")
        assert PAYROLL_RUN_WORKFLOW.is_terminal("cancelled")
        assert not PAYROLL_RUN_WORKFLOW.is_terminal("approved")

    def test_reachable_from(self):
        assert set(PAYROLL_RUN_WORKFLOW.reachable_from("draft")) == {"calculated", "cancelled"}
        assert set(PAYROLL_RUN_WORKFLOW.reachable_from("calculated")) == {
            "calculated", "verified", "cancelled", "draft",
        }
        assert PAYROLL_RUN_WORKFLOW.reachable_from("approved") == ("processed",)
        assert PAYROLL_RUN_WORKFLOW.reachable_from("processed") == ()

    def test_approved_run_cannot_be_cancelled(self):
        assert PAYROLL_RUN_WORKFLOW.find("approved", "cancel") is None

    def test_calculation_guards(self):
        transition = PAYROLL_RUN_WORKFLOW.find("draft", "calculate")
        assert [g.name for g in transition.guards] == ["inputs_present", "checklist_complete"]

    def test_approver_roles_configurable(self):
        wf = build_payroll_run_workflow(("cfo",))
        assert wf.find("verified", "approve").required_roles == ("cfo",)
        assert wf.find("calculated", "verify").required_roles == ()
