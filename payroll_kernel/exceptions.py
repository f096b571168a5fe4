"""
Typed Exception Hierarchy for the Payroll Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Payroll figures end up in bank files and statutory returns.  Callers must be
able to tell a bad input from an illegal lifecycle move from a storage outage
without parsing message strings.  Every error therefore has:
  1. a TYPED exception class (catch by type, not message)
  2. a CODE class attribute (machine-readable, API-safe)
  3. structured DATA attributes (not just a message string)

Example:
    try:
        service.approve(run_id, actor)
    except UnauthorizedActorError as e:
        api_response(code=e.code, actor=e.actor_id, required=e.required_roles)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PayrollKernelError:

    PayrollKernelError (base)
    |
    +-- InvalidInputError
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   +-- GuardNotSatisfiedError
    |   +-- UnauthorizedActorError
    |
    +-- ImmutableStateError
    |
    +-- ConcurrentModificationError
    |
    +-- StorageError
    |   +-- RunNotFoundError
    |
    +-- AuditRecordError
    |
    +-- AuditChainBrokenError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                        | When Raised
----------------------------|-----------------------------------------------
INVALID_INPUT               | Negative, non-finite or fractional amount; bad row shape
INVALID_TRANSITION          | Target status not reachable from current status
GUARD_NOT_SATISFIED         | Transition reachable but a precondition failed
UNAUTHORIZED_ACTOR          | Actor lacks a role required by the transition
IMMUTABLE_STATE             | Compensation inputs edited after approval
CONCURRENT_MODIFICATION     | Two writers on the same run (lock or version)
STORAGE_ERROR               | Persistence collaborator failed
RUN_NOT_FOUND               | No run with the given id
AUDIT_RECORD_FAILED         | Audit collaborator failed to append an event
AUDIT_CHAIN_BROKEN          | Stored audit events fail hash-chain verification
CONFIGURATION_ERROR         | Statutory table or rates are malformed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. InvalidInputError is always a caller bug: report it, never retry.
2. TransitionError subclasses leave the run untouched; the check happens
   before any mutation.
3. ConcurrentModificationError: retry at a higher level, after reloading.
4. StorageError during a transition means the transition did not happen.
5. AuditRecordError never reaches the caller of a lifecycle operation; it
   is downgraded to a warning on the result.
"""


class PayrollKernelError(Exception):
    """
    Base exception for all payroll kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYROLL_KERNEL_ERROR"


# Input validation


class InvalidInputError(PayrollKernelError):
    """
    A monetary input to a pure calculator (or a collaborator row) is invalid.

    ``reason`` distinguishes the failure: ``negative``, ``non_finite``,
    ``fractional``, ``not_a_number``, ``out_of_range`` or ``schema``.
    """

    code: str = "INVALID_INPUT"

    NEGATIVE = "negative"
    NON_FINITE = "non_finite"
    FRACTIONAL = "fractional"
    NOT_A_NUMBER = "not_a_number"
    OUT_OF_RANGE = "out_of_range"
    SCHEMA = "schema"

    def __init__(self, field: str, value: object, reason: str, detail: str | None = None):
        self.field = field
        self.value = value
        self.reason = reason
        message = f"Invalid {field}={value!r}: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


# Lifecycle transitions


class TransitionError(PayrollKernelError):
    """Base exception for payroll run lifecycle transition errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """Requested target status is not reachable from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, run_id: str, from_status: str, to_status: str):
        self.run_id = run_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Payroll run {run_id} cannot move from '{from_status}' to '{to_status}'"
        )


class GuardNotSatisfiedError(TransitionError):
    """The transition exists but one of its preconditions is not met."""

    code: str = "GUARD_NOT_SATISFIED"

    def __init__(self, run_id: str, guard: str, detail: str):
        self.run_id = run_id
        self.guard = guard
        self.detail = detail
        super().__init__(f"Payroll run {run_id}: guard '{guard}' not satisfied: {detail}")


class UnauthorizedActorError(TransitionError):
    """Actor does not hold any of the roles required for the transition."""

    code: str = "UNAUTHORIZED_ACTOR"

    def __init__(self, actor_id: str, action: str, required_roles: tuple[str, ...]):
        self.actor_id = actor_id
        self.action = action
        self.required_roles = required_roles
        super().__init__(
            f"Actor {actor_id} is not authorized to {action}; "
            f"requires one of {', '.join(required_roles)}"
        )


# Immutability


class ImmutableStateError(PayrollKernelError):
    """
    Attempted to mutate compensation inputs of a run that is approved,
    processed or cancelled.
    """

    code: str = "IMMUTABLE_STATE"

    def __init__(self, run_id: str, status: str, operation: str):
        self.run_id = run_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} on payroll run {run_id}: run is '{status}'"
        )


# Concurrency


class ConcurrentModificationError(PayrollKernelError):
    """Another writer holds or has already changed the same payroll run."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        run_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.run_id = run_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        if expected_version is None:
            message = f"Payroll run {run_id} is being modified by another operation"
        else:
            message = (
                f"Payroll run {run_id} was modified concurrently: "
                f"expected version {expected_version}, found {actual_version}"
            )
        super().__init__(message)


# Collaborator failures


class StorageError(PayrollKernelError):
    """The persistence collaborator failed; treated as non-retryable here."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


class RunNotFoundError(StorageError):
    """No payroll run exists with the given id."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__("load_run", f"payroll run {run_id} not found")


class AuditRecordError(PayrollKernelError):
    """The audit collaborator could not append an event."""

    code: str = "AUDIT_RECORD_FAILED"

    def __init__(self, run_id: str, action: str, detail: str):
        self.run_id = run_id
        self.action = action
        self.detail = detail
        super().__init__(f"Audit record for {action} on run {run_id} failed: {detail}")


class AuditChainBrokenError(PayrollKernelError):
    """A stored audit event does not hash to its recorded value or link."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, event_id: str, expected_hash: str, actual_hash: str):
        self.event_id = event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {event_id}: expected {expected_hash}, found {actual_hash}"
        )


# Configuration


class ConfigurationError(PayrollKernelError):
    """Statutory configuration (brackets, rates) is malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Invalid payroll configuration in {source}: {detail}")
