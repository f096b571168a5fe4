"""
payroll_services.workflow_executor -- Workflow transition execution.

Responsibility:
    Resolves and checks one lifecycle transition: the transition must
    exist, the actor must hold a required role (when the transition names
    any), and every guard must pass.  Thin coordinator -- guard logic lives
    in ``GuardExecutor`` evaluators; state changes and persistence belong
    to the caller.

Architecture position:
    Services layer.  May import from payroll_kernel (domain, exceptions).

Invariants enforced:
    - The check happens before any mutation: a rejected transition has no
      side effects beyond its trace record.
    - Every outcome (success or failure) emits one WORKFLOW_TRANSITION
      trace record.

Failure modes:
    - InvalidTransitionError: no transition from the current state.
    - UnauthorizedActorError: actor lacks every required role.
    - GuardNotSatisfiedError: first failing guard, in declaration order.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.domain.workflow import Guard, Transition, Workflow
from payroll_kernel.exceptions import (
    GuardNotSatisfiedError,
    InvalidTransitionError,
    UnauthorizedActorError,
)
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.workflow_executor")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_NO_TRANSITION = "no_transition"
OUTCOME_UNAUTHORIZED = "unauthorized"


class ActorLike(Protocol):
    actor_id: str
    roles: tuple[str, ...]


@dataclass(frozen=True)
class TransitionResult:
    """An allowed transition, ready for the caller to apply."""
    transition: Transition
    from_state: str
    to_state: str
    action: str


def _emit_workflow_trace(
    clock: Clock,
    workflow_name: str,
    action: str,
    entity_id: str,
    from_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_state: str | None = None,
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    """Emit a structured workflow transition record."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": clock.now().isoformat(),
        "workflow": workflow_name,
        "action": action,
        "entity_id": entity_id,
        "from_state": from_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    record.update(LogContext.get_all())
    level = logger.info if outcome == OUTCOME_SUCCESS else logger.warning
    level("workflow_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink(record)


# ---------------------------------------------------------------------------
# Guard evaluation
# ---------------------------------------------------------------------------


def _get_attr(context: Any, key: str, default: Any = None) -> Any:
    """Get attribute from context (object or dict)."""
    if context is None:
        return default
    if hasattr(context, "get") and callable(getattr(context, "get")):
        return context.get(key, default)
    return getattr(context, key, default)


def _inputs_present(context: Any) -> bool:
    return (_get_attr(context, "input_count", 0) or 0) > 0


def _checklist_complete(context: Any) -> bool:
    checklist = _get_attr(context, "checklist")
    return checklist is not None and bool(checklist.is_complete)


def _explain_checklist(context: Any) -> str:
    checklist = _get_attr(context, "checklist")
    if checklist is None:
        return "no checklist supplied"
    return "unconfirmed items: " + ", ".join(checklist.missing_items())


class GuardExecutor:
    """Evaluates workflow guards against context.

    Guards are declared on transitions (name + description).  This executor
    holds the evaluation logic per guard name and, optionally, a function
    producing a human-readable reason when the guard fails.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Any], bool]] = {}
        self._explainers: dict[str, Callable[[Any], str]] = {}

    def register(
        self,
        guard_name: str,
        evaluator: Callable[[Any], bool],
        explain: Callable[[Any], str] | None = None,
    ) -> None:
        self._evaluators[guard_name] = evaluator
        if explain is not None:
            self._explainers[guard_name] = explain

    def evaluate(self, guard: Guard, context: Any = None) -> bool:
        """Evaluate a guard against context. Returns True if guard passes."""
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        try:
            return bool(fn(context))
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": guard.name, "error": str(e)},
            )
            return False

    def explain(self, guard: Guard, context: Any = None) -> str:
        fn = self._explainers.get(guard.name)
        return fn(context) if fn is not None else guard.description


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with the payroll run guards registered."""
    ex = GuardExecutor()
    ex.register("inputs_present", _inputs_present, lambda ctx: "run has no compensation inputs")
    ex.register("checklist_complete", _checklist_complete, _explain_checklist)
    return ex


# ---------------------------------------------------------------------------
# WorkflowExecutor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Checks workflow transitions: existence, actor roles, guards."""

    def __init__(
        self,
        clock: Clock | None = None,
        guard_executor: GuardExecutor | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._guard_executor = guard_executor or default_guard_executor()

    def resolve_action(self, workflow: Workflow, current_state: str, target_state: str) -> str | None:
        """Action leading from ``current_state`` to ``target_state``, if any."""
        transition = workflow.find_to(current_state, target_state)
        return transition.action if transition is not None else None

    def execute_transition(
        self,
        workflow: Workflow,
        entity_id: str,
        current_state: str,
        action: str,
        actor: ActorLike,
        context: Any = None,
        target_state: str | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> TransitionResult:
        """Check that ``action`` may fire from ``current_state`` for ``actor``.

        ``target_state`` only shapes the error when no transition exists, so
        the caller sees the status it asked for.

        Raises:
            InvalidTransitionError, UnauthorizedActorError, GuardNotSatisfiedError.
        """
        t0 = time.monotonic()

        def trace(outcome: str, reason: str, to_state: str | None = None) -> None:
            _emit_workflow_trace(
                clock=self._clock,
                workflow_name=workflow.name,
                action=action,
                entity_id=entity_id,
                from_state=current_state,
                outcome=outcome,
                reason=reason,
                duration_ms=(time.monotonic() - t0) * 1000,
                to_state=to_state,
                outcome_sink=outcome_sink,
            )

        # 1. Find the matching transition
        transition = workflow.find(current_state, action)
        if transition is None:
            reason = (
                f"No transition from '{current_state}' via action '{action}' "
                f"in workflow '{workflow.name}'"
            )
            trace(OUTCOME_NO_TRANSITION, reason)
            raise InvalidTransitionError(entity_id, current_state, target_state or action)

        # 2. Role gate
        if transition.required_roles and not any(
            role in actor.roles for role in transition.required_roles
        ):
            trace(OUTCOME_UNAUTHORIZED, f"Actor {actor.actor_id} lacks required role")
            raise UnauthorizedActorError(actor.actor_id, action, transition.required_roles)

        # 3. Guards, in declaration order
        for guard in transition.guards:
            if not self._guard_executor.evaluate(guard, context):
                detail = self._guard_executor.explain(guard, context)
                trace(OUTCOME_GUARD_FAILED, f"Guard not satisfied: {guard.name}")
                raise GuardNotSatisfiedError(entity_id, guard.name, detail)

        trace(OUTCOME_SUCCESS, "transition allowed", to_state=transition.to_state)
        return TransitionResult(
            transition=transition,
            from_state=current_state,
            to_state=transition.to_state,
            action=action,
        )
