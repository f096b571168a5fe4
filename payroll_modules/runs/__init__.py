"""
Payroll Runs Module (``payroll_modules.runs``).

Responsibility
--------------
The payroll run aggregate and its batch lifecycle: compensation inputs in,
reconciled lines and run totals out, moved through
``draft -> calculated -> verified -> approved -> processed`` by
``PayrollRunService``.

Architecture position
---------------------
**Modules layer** -- data definitions and the workflow declaration are
exported here.  The service lives in ``payroll_modules.runs.service`` and is
imported from there, since it depends on ``payroll_services``.

Invariants enforced
-------------------
* Inputs are immutable once a run is approved.
* Lines and totals are only ever replaced wholesale by a calculation.
* Every lifecycle change emits exactly one audit event.
"""

from payroll_modules.runs.models import (
    Actor,
    AuditEvent,
    CalculationChecklist,
    EmployeeCompensationInput,
    LifecycleResult,
    PayrollLine,
    PayrollRun,
    PayrollRunStatus,
    RunTotals,
)
from payroll_modules.runs.workflows import PAYROLL_RUN_WORKFLOW, build_payroll_run_workflow

__all__ = [
    "Actor",
    "AuditEvent",
    "CalculationChecklist",
    "EmployeeCompensationInput",
    "LifecycleResult",
    "PayrollLine",
    "PayrollRun",
    "PayrollRunStatus",
    "RunTotals",
    "PAYROLL_RUN_WORKFLOW",
    "build_payroll_run_workflow",
]
