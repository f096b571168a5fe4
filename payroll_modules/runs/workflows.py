"""Payroll Run Workflows.

State machine for the payroll run lifecycle:

    draft -> calculated -> verified -> approved -> processed

``cancelled`` is reachable from draft, calculated and verified only; an
approved run is corrected by a compensating run, never cancelled.
Editing inputs of a calculated or verified run reopens it to draft.
"""

from payroll_config import LifecycleSettings
from payroll_kernel.domain.workflow import Guard, Transition, Workflow
from payroll_kernel.logging_config import get_logger

logger = get_logger("modules.runs.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

INPUTS_PRESENT = Guard(
    name="inputs_present",
    description="Run has at least one employee compensation input",
)

CHECKLIST_COMPLETE = Guard(
    name="checklist_complete",
    description="Pre-calculation checklist fully confirmed",
)


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

ACTION_CALCULATE = "calculate"
ACTION_RECALCULATE = "recalculate"
ACTION_VERIFY = "verify"
ACTION_APPROVE = "approve"
ACTION_PROCESS = "process"
ACTION_CANCEL = "cancel"
ACTION_REOPEN = "reopen"


def build_payroll_run_workflow(approver_roles: tuple[str, ...]) -> Workflow:
    """Payroll run lifecycle with ``approve`` restricted to ``approver_roles``."""
    calculation_guards = (INPUTS_PRESENT, CHECKLIST_COMPLETE)
    return Workflow(
        name="payroll_run",
        description="Payroll calculation and batch lifecycle",
        initial_state="draft",
        states=(
            "draft",
            "calculated",
            "verified",
            "approved",
            "processed",
            "cancelled",
        ),
        transitions=(
            Transition("draft", "calculated", action=ACTION_CALCULATE, guards=calculation_guards),
            Transition("calculated", "calculated", action=ACTION_RECALCULATE, guards=calculation_guards),
            Transition("calculated", "verified", action=ACTION_VERIFY),
            Transition("verified", "approved", action=ACTION_APPROVE, required_roles=approver_roles),
            Transition("approved", "processed", action=ACTION_PROCESS),
            Transition("draft", "cancelled", action=ACTION_CANCEL),
            Transition("calculated", "cancelled", action=ACTION_CANCEL),
            Transition("verified", "cancelled", action=ACTION_CANCEL),
            Transition("calculated", "draft", action=ACTION_REOPEN),
            Transition("verified", "draft", action=ACTION_REOPEN),
        ),
        terminal_states=("processed", "cancelled"),
    )


PAYROLL_RUN_WORKFLOW = build_payroll_run_workflow(LifecycleSettings().approver_roles)

logger.debug(
    "payroll_run_workflow_registered",
    extra={
        "workflow_name": PAYROLL_RUN_WORKFLOW.name,
        "state_count": len(PAYROLL_RUN_WORKFLOW.states),
        "transition_count": len(PAYROLL_RUN_WORKFLOW.transitions),
        "initial_state": PAYROLL_RUN_WORKFLOW.initial_state,
    },
)
