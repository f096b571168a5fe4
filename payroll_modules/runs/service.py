"""
Payroll Run Service (``payroll_modules.runs.service``).

Responsibility
--------------
Owns the payroll run lifecycle: creating runs, editing compensation inputs,
calculating lines and totals, and moving runs through
``draft -> calculated -> verified -> approved -> processed`` (or
``cancelled``).  Pure computation is delegated to ``payroll_engines``;
storage, audit, locking and transition checks to ``payroll_services``
collaborators.

Architecture position
---------------------
**Modules layer** -- ``PayrollRunService`` is the sole public entry point
for mutating a payroll run.  It composes the stateless
``PayrollLineCalculator`` and ``aggregate`` with an injected
``RunRepository``, ``AuditSink``, ``RunLockRegistry`` and
``WorkflowExecutor``.

Invariants enforced
-------------------
* At most one recompute-or-transition per run id at a time (run lock),
  plus an optimistic version check on every save.
* The transition check (existence, roles, guards) runs before any
  mutation; a rejected operation changes nothing.
* Lines, totals and status are written in one ``atomic()`` unit of work.
* Inputs are immutable once a run is approved; editing a calculated or
  verified run reopens it to draft and clears its figures.
* Every committed operation emits exactly one ``AuditEvent``.

Failure modes
-------------
* ``InvalidTransitionError`` / ``GuardNotSatisfiedError`` /
  ``UnauthorizedActorError`` -- transition rejected, nothing written.
* ``ImmutableStateError`` -- input edit on an approved, processed or
  cancelled run.
* ``ConcurrentModificationError`` -- another operation holds the run, or
  the stored version moved underneath us.
* ``StorageError`` -- the unit of work failed and was rolled back; the run
  is as it was before the call.
* Audit sink failures never escape, whatever their type: the change stays
  committed and the failure is returned in ``LifecycleResult.warnings``.

Audit relevance
---------------
Each ``AuditEvent`` carries actor, timestamp, from/to status and the
before/after ``PayrollRun.snapshot()``.

Usage::

    service = PayrollRunService(InMemoryRunRepository(), InMemoryAuditSink())
    run = service.create_run("July 2024", date(2024, 7, 1), date(2024, 7, 31), actor).run
    service.set_inputs(run.id, [compensation], actor)
    result = service.calculate(run.id, CalculationChecklist.all_confirmed(), actor)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from typing import Any
from uuid import UUID

from payroll_config import StatutoryConfig, get_active_config
from payroll_engines import PayrollLineCalculator, aggregate
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.workflow import Workflow
from payroll_kernel.exceptions import (
    ImmutableStateError,
    InvalidInputError,
    InvalidTransitionError,
)
from payroll_kernel.logging_config import LogContext, get_logger
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
from payroll_modules.runs.workflows import (
    ACTION_APPROVE,
    ACTION_CALCULATE,
    ACTION_CANCEL,
    ACTION_PROCESS,
    ACTION_RECALCULATE,
    ACTION_REOPEN,
    ACTION_VERIFY,
    build_payroll_run_workflow,
)
from payroll_services.audit import AuditSink
from payroll_services.persistence import RunRepository
from payroll_services.run_locks import RunLockRegistry
from payroll_services.workflow_executor import TransitionResult, WorkflowExecutor

logger = get_logger("modules.runs.service")

ACTION_RUN_CREATED = "run_created"
ACTION_INPUTS_UPDATED = "inputs_updated"

CompensationLike = EmployeeCompensationInput | Mapping[str, Any]


def _coerce_input(compensation: CompensationLike) -> EmployeeCompensationInput:
    if isinstance(compensation, EmployeeCompensationInput):
        return compensation
    return EmployeeCompensationInput.from_record(compensation)


def _reject_duplicates(inputs: tuple[EmployeeCompensationInput, ...]) -> None:
    seen: set[str] = set()
    for compensation in inputs:
        if compensation.employee_id in seen:
            raise InvalidInputError(
                "employee_id", compensation.employee_id, InvalidInputError.SCHEMA,
                "one compensation input per employee per run",
            )
        seen.add(compensation.employee_id)


class PayrollRunService:
    """
    Orchestrates the payroll run lifecycle.

    Contract
    --------
    * Every mutating method returns ``LifecycleResult``.
    * Read methods (``get_run``, ``get_lines``, ``get_inputs``) return
      domain objects and have no side effects.

    Guarantees
    ----------
    * Calculation is deterministic: the same inputs always produce the same
      lines and totals, so recalculating a calculated run is idempotent.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT generate bank payment files or exports; consumers read
      ``RunTotals`` and ``PayrollLine.as_record()``.
    * Does NOT authenticate actors; roles arrive on ``Actor``.
    """

    def __init__(
        self,
        repository: RunRepository,
        audit_sink: AuditSink,
        config: StatutoryConfig | None = None,
        clock: Clock | None = None,
        lock_registry: RunLockRegistry | None = None,
        workflow_executor: WorkflowExecutor | None = None,
    ):
        self._repository = repository
        self._audit_sink = audit_sink
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._locks = lock_registry or RunLockRegistry(
            self._config.lifecycle.lock_timeout_seconds
        )
        self._executor = workflow_executor or WorkflowExecutor(clock=self._clock)
        self._workflow = build_payroll_run_workflow(self._config.lifecycle.approver_roles)
        self._calculator = PayrollLineCalculator.from_config(self._config)

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    # =========================================================================
    # Creation
    # =========================================================================

    def create_run(
        self,
        name: str,
        pay_period_start: date,
        pay_period_end: date,
        actor: Actor,
        notes: str | None = None,
    ) -> LifecycleResult:
        """Create a draft run with zero totals and no inputs."""
        now = self._clock.now()
        run = PayrollRun.new(
            name=name,
            pay_period_start=pay_period_start,
            pay_period_end=pay_period_end,
            created_by=actor.actor_id,
            created_at=now,
            notes=notes,
        )
        with LogContext.bind(run_id=run.id, actor_id=actor.actor_id):
            with self._repository.atomic():
                self._repository.save_run(run, expected_version=None)

            logger.info("payroll_run_created", extra={
                "run_name": run.name,
                "pay_month": run.pay_month,
            })
            return self._finish(None, run, ACTION_RUN_CREATED, actor, now)

    # =========================================================================
    # Compensation inputs
    # =========================================================================

    def set_inputs(
        self,
        run_id: UUID,
        inputs: Iterable[CompensationLike],
        actor: Actor,
    ) -> LifecycleResult:
        """Replace the run's compensation inputs wholesale."""
        replacement = tuple(_coerce_input(i) for i in inputs)
        _reject_duplicates(replacement)
        return self._edit_inputs(run_id, actor, "set_inputs", lambda current: replacement)

    def upsert_input(
        self,
        run_id: UUID,
        compensation: CompensationLike,
        actor: Actor,
    ) -> LifecycleResult:
        """Add one employee's input, or replace it if the employee is already present."""
        compensation = _coerce_input(compensation)

        def apply(current: tuple[EmployeeCompensationInput, ...]):
            if any(c.employee_id == compensation.employee_id for c in current):
                return tuple(
                    compensation if c.employee_id == compensation.employee_id else c
                    for c in current
                )
            return current + (compensation,)

        return self._edit_inputs(run_id, actor, "upsert_input", apply)

    def remove_input(self, run_id: UUID, employee_id: str, actor: Actor) -> LifecycleResult:
        def apply(current: tuple[EmployeeCompensationInput, ...]):
            remaining = tuple(c for c in current if c.employee_id != employee_id)
            if len(remaining) == len(current):
                raise InvalidInputError(
                    "employee_id", employee_id, InvalidInputError.SCHEMA,
                    "no compensation input for this employee",
                )
            return remaining

        return self._edit_inputs(run_id, actor, "remove_input", apply)

    def _edit_inputs(
        self,
        run_id: UUID,
        actor: Actor,
        operation: str,
        apply: Callable[[tuple[EmployeeCompensationInput, ...]], tuple[EmployeeCompensationInput, ...]],
    ) -> LifecycleResult:
        with self._operation(run_id, actor, operation):
            run = self._repository.load_run(run_id)
            if not run.status.inputs_mutable:
                logger.warning("payroll_run_inputs_immutable", extra={
                    "run_id": str(run_id),
                    "status": run.status.value,
                    "operation": operation,
                    "actor_id": actor.actor_id,
                })
                raise ImmutableStateError(str(run_id), run.status.value, operation)

            inputs = apply(self._repository.load_inputs(run_id))
            now = self._clock.now()
            reopening = run.status is not PayrollRunStatus.DRAFT
            updated = replace(run, version=run.version + 1)
            if reopening:
                self._check(run, ACTION_REOPEN, actor, PayrollRunStatus.DRAFT)
                updated = self._reset_figures(updated)

            with self._repository.atomic():
                self._repository.save_inputs(run.id, inputs)
                if reopening:
                    self._repository.save_lines(run.id, ())
                self._repository.save_run(updated, expected_version=run.version)

            if reopening:
                logger.info("payroll_run_reopened_by_input_edit", extra={
                    "run_id": str(run.id),
                    "from_status": run.status.value,
                    "operation": operation,
                })
            return self._finish(
                run, updated, ACTION_INPUTS_UPDATED, actor, now,
                extra_after={"input_count": len(inputs), "operation": operation},
            )

    # =========================================================================
    # Calculation
    # =========================================================================

    def calculate(
        self,
        run_id: UUID,
        checklist: CalculationChecklist,
        actor: Actor,
    ) -> LifecycleResult:
        """
        Compute every line and the run totals; ``draft -> calculated``.

        On a run already in ``calculated`` this recomputes and replaces all
        lines and totals.
        """
        with self._operation(run_id, actor, ACTION_CALCULATE):
            run = self._repository.load_run(run_id)
            inputs = self._repository.load_inputs(run_id)
            action = (
                ACTION_RECALCULATE if run.status is PayrollRunStatus.CALCULATED
                else ACTION_CALCULATE
            )
            self._check(
                run, action, actor, PayrollRunStatus.CALCULATED,
                context={"input_count": len(inputs), "checklist": checklist},
            )

            logger.info("payroll_run_calculation_started", extra={
                "run_id": str(run.id),
                "action": action,
                "employee_count": len(inputs),
            })
            lines = tuple(self._calculator.compute(c) for c in inputs)
            totals = aggregate(lines)

            now = self._clock.now()
            updated = replace(
                run,
                status=PayrollRunStatus.CALCULATED,
                totals=totals,
                calculated_by=actor.actor_id,
                calculated_at=now,
                version=run.version + 1,
            )
            with self._repository.atomic():
                self._repository.save_lines(run.id, lines)
                self._repository.save_run(updated, expected_version=run.version)

            return self._finish(run, updated, action, actor, now, lines=lines)

    # =========================================================================
    # Status transitions
    # =========================================================================

    def verify(self, run_id: UUID, actor: Actor) -> LifecycleResult:
        """Mark calculated figures as reviewed; no recomputation."""
        return self._status_transition(
            run_id, ACTION_VERIFY, actor, PayrollRunStatus.VERIFIED, stamp="verified",
        )

    def approve(self, run_id: UUID, actor: Actor) -> LifecycleResult:
        """Approve a verified run.  The actor must hold an approver role."""
        return self._status_transition(
            run_id, ACTION_APPROVE, actor, PayrollRunStatus.APPROVED, stamp="approved",
        )

    def process(self, run_id: UUID, actor: Actor) -> LifecycleResult:
        return self._status_transition(
            run_id, ACTION_PROCESS, actor, PayrollRunStatus.PROCESSED, stamp="processed",
        )

    def cancel(self, run_id: UUID, actor: Actor, reason: str | None = None) -> LifecycleResult:
        """Logical delete; only before approval."""
        return self._status_transition(
            run_id, ACTION_CANCEL, actor, PayrollRunStatus.CANCELLED,
            stamp="cancelled", cancellation_reason=reason,
        )

    def reopen(self, run_id: UUID, actor: Actor) -> LifecycleResult:
        """Send a calculated or verified run back to draft, discarding its figures."""
        return self._status_transition(
            run_id, ACTION_REOPEN, actor, PayrollRunStatus.DRAFT, clear_figures=True,
        )

    def transition_to(
        self,
        run_id: UUID,
        target: PayrollRunStatus | str,
        actor: Actor,
        checklist: CalculationChecklist | None = None,
        reason: str | None = None,
    ) -> LifecycleResult:
        """Move a run to ``target`` through the matching lifecycle operation."""
        try:
            status = PayrollRunStatus(target)
        except ValueError:
            run = self._repository.load_run(run_id)
            raise InvalidTransitionError(str(run_id), run.status.value, str(target)) from None

        if status is PayrollRunStatus.CALCULATED:
            return self.calculate(run_id, checklist or CalculationChecklist(), actor)
        if status is PayrollRunStatus.VERIFIED:
            return self.verify(run_id, actor)
        if status is PayrollRunStatus.APPROVED:
            return self.approve(run_id, actor)
        if status is PayrollRunStatus.PROCESSED:
            return self.process(run_id, actor)
        if status is PayrollRunStatus.CANCELLED:
            return self.cancel(run_id, actor, reason)
        return self.reopen(run_id, actor)

    def _status_transition(
        self,
        run_id: UUID,
        action: str,
        actor: Actor,
        target: PayrollRunStatus,
        stamp: str | None = None,
        clear_figures: bool = False,
        **changes: Any,
    ) -> LifecycleResult:
        with self._operation(run_id, actor, action):
            run = self._repository.load_run(run_id)
            self._check(run, action, actor, target)

            now = self._clock.now()
            if stamp is not None:
                changes[f"{stamp}_by"] = actor.actor_id
                changes[f"{stamp}_at"] = now
            updated = replace(run, status=target, version=run.version + 1, **changes)
            if clear_figures:
                updated = self._reset_figures(updated)

            with self._repository.atomic():
                if clear_figures:
                    self._repository.save_lines(run.id, ())
                self._repository.save_run(updated, expected_version=run.version)

            return self._finish(run, updated, action, actor, now)

    # =========================================================================
    # Read side
    # =========================================================================

    def get_run(self, run_id: UUID) -> PayrollRun:
        return self._repository.load_run(run_id)

    def get_lines(self, run_id: UUID) -> tuple[PayrollLine, ...]:
        return self._repository.load_lines(run_id)

    def get_inputs(self, run_id: UUID) -> tuple[EmployeeCompensationInput, ...]:
        return self._repository.load_inputs(run_id)

    # =========================================================================
    # Internals
    # =========================================================================

    @contextmanager
    def _operation(self, run_id: UUID, actor: Actor, operation: str) -> Iterator[None]:
        """Bind the run and actor to every log line, then hold the run lock."""
        with LogContext.bind(run_id=run_id, actor_id=actor.actor_id):
            with self._locks.hold(run_id, operation):
                yield

    def _check(
        self,
        run: PayrollRun,
        action: str,
        actor: Actor,
        target: PayrollRunStatus,
        context: dict[str, Any] | None = None,
    ) -> TransitionResult:
        return self._executor.execute_transition(
            self._workflow,
            str(run.id),
            run.status.value,
            action,
            actor,
            context=context,
            target_state=target.value,
        )

    @staticmethod
    def _reset_figures(run: PayrollRun) -> PayrollRun:
        return replace(
            run,
            status=PayrollRunStatus.DRAFT,
            totals=RunTotals(),
            calculated_by=None,
            calculated_at=None,
            verified_by=None,
            verified_at=None,
        )

    def _finish(
        self,
        before: PayrollRun | None,
        after: PayrollRun,
        action: str,
        actor: Actor,
        occurred_at: datetime,
        lines: tuple[PayrollLine, ...] = (),
        extra_after: dict[str, Any] | None = None,
    ) -> LifecycleResult:
        """Record the audit event for a committed change and build the result."""
        after_image = after.snapshot()
        if extra_after:
            after_image.update(extra_after)
        audit_event = AuditEvent(
            run_id=after.id,
            action=action,
            actor_id=actor.actor_id,
            occurred_at=occurred_at,
            from_status=before.status.value if before is not None else None,
            to_status=after.status.value,
            before=before.snapshot() if before is not None else None,
            after=after_image,
        )

        warnings: list[str] = []
        recorded: AuditEvent | None = audit_event
        try:
            self._audit_sink.record(audit_event)
        except Exception as exc:
            # The change is already committed; any sink failure is reported, not raised.
            recorded = None
            warnings.append(f"audit event not recorded: {exc}")
            logger.warning("payroll_run_audit_failed", extra={
                "run_id": str(after.id),
                "action": action,
                "error_type": type(exc).__name__,
                "error": str(exc),
            })

        for line in lines:
            if line.is_over_deducted:
                warnings.append(
                    f"employee {line.employee_id} has negative net salary {line.net_salary}"
                )

        logger.info("run_transition_committed", extra={
            "run_id": str(after.id),
            "action": action,
            "from_status": audit_event.from_status,
            "to_status": audit_event.to_status,
            "version": after.version,
            "actor_id": actor.actor_id,
            "employee_count": after.totals.employee_count,
            "total_net_salary": str(after.totals.total_net_salary),
            "warning_count": len(warnings),
        })
        return LifecycleResult(
            run=after,
            lines=lines,
            audit_event=recorded,
            warnings=tuple(warnings),
        )
