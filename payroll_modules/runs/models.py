"""
Payroll Run Domain Models (``payroll_modules.runs.models``).

Responsibility
--------------
Frozen dataclass value objects for the payroll run lifecycle: the run
aggregate root, its status, the pre-calculation checklist, the acting user,
audit events and the result envelope returned by every lifecycle operation.
Per-employee inputs, lines and run totals are engine types re-exported here.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``PayrollRunService`` and the persistence/audit collaborators.

Invariants enforced
-------------------
* All models are ``frozen=True``; changes produce new instances via
  ``dataclasses.replace``.
* ``pay_period_end`` never precedes ``pay_period_start``.
* ``pay_month`` (``YYYY-MM``) and ``pay_year`` derive from the period start.

Audit relevance
---------------
* ``PayrollRun.snapshot()`` is the before/after image carried by every
  ``AuditEvent``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from payroll_engines import EmployeeCompensationInput, PayrollLine, RunTotals
from payroll_kernel.exceptions import InvalidInputError
from payroll_kernel.logging_config import get_logger

logger = get_logger("modules.runs.models")

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
]


class PayrollRunStatus(Enum):
    """Payroll run lifecycle states."""
    DRAFT = "draft"
    CALCULATED = "calculated"
    VERIFIED = "verified"
    APPROVED = "approved"
    PROCESSED = "processed"
    CANCELLED = "cancelled"

    @property
    def inputs_mutable(self) -> bool:
        """Compensation inputs may change only before approval."""
        return self in (
            PayrollRunStatus.DRAFT,
            PayrollRunStatus.CALCULATED,
            PayrollRunStatus.VERIFIED,
        )


@dataclass(frozen=True)
class CalculationChecklist:
    """
    Pre-calculation gate passed into ``calculate``.

    Each item is confirmed by a person before figures are produced.
    """
    attendance_confirmed: bool = False
    loans_reconciled: bool = False
    leave_recorded: bool = False
    new_hires_captured: bool = False

    ITEMS = (
        "attendance_confirmed",
        "loans_reconciled",
        "leave_recorded",
        "new_hires_captured",
    )

    @classmethod
    def all_confirmed(cls) -> CalculationChecklist:
        return cls(True, True, True, True)

    @property
    def is_complete(self) -> bool:
        return not self.missing_items()

    def missing_items(self) -> tuple[str, ...]:
        return tuple(item for item in self.ITEMS if not getattr(self, item))


@dataclass(frozen=True)
class Actor:
    """The person (or system principal) performing a lifecycle operation."""
    actor_id: str
    roles: tuple[str, ...] = ()

    def has_any_role(self, roles: tuple[str, ...]) -> bool:
        return any(role in self.roles for role in roles)


@dataclass(frozen=True)
class PayrollRun:
    """A payroll processing run; the aggregate root."""
    id: UUID
    name: str
    pay_period_start: date
    pay_period_end: date
    status: PayrollRunStatus = PayrollRunStatus.DRAFT
    totals: RunTotals = field(default_factory=RunTotals)
    version: int = 1
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    calculated_by: str | None = None
    calculated_at: datetime | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    processed_by: str | None = None
    processed_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise InvalidInputError("name", self.name, InvalidInputError.SCHEMA, "run name is required")
        if self.pay_period_end < self.pay_period_start:
            logger.warning(
                "payroll_run_invalid_period",
                extra={
                    "run_id": str(self.id),
                    "pay_period_start": self.pay_period_start.isoformat(),
                    "pay_period_end": self.pay_period_end.isoformat(),
                },
            )
            raise InvalidInputError(
                "pay_period_end", self.pay_period_end, InvalidInputError.SCHEMA,
                "pay period end precedes its start",
            )

    @classmethod
    def new(
        cls,
        name: str,
        pay_period_start: date,
        pay_period_end: date,
        created_by: str | None = None,
        created_at: datetime | None = None,
        notes: str | None = None,
    ) -> PayrollRun:
        return cls(
            id=uuid4(),
            name=name,
            pay_period_start=pay_period_start,
            pay_period_end=pay_period_end,
            created_by=created_by,
            created_at=created_at,
            notes=notes,
        )

    @property
    def pay_month(self) -> str:
        return f"{self.pay_period_start.year:04d}-{self.pay_period_start.month:02d}"

    @property
    def pay_year(self) -> int:
        return self.pay_period_start.year

    @property
    def is_terminal(self) -> bool:
        return self.status in (PayrollRunStatus.PROCESSED, PayrollRunStatus.CANCELLED)

    def snapshot(self) -> dict[str, Any]:
        """Audit image of the run: status, version and totals."""
        return {
            "status": self.status.value,
            "version": self.version,
            "totals": {
                k: str(v) if not isinstance(v, int) else v
                for k, v in self.totals.as_record().items()
            },
        }


@dataclass(frozen=True)
class AuditEvent:
    """Append-only description of one lifecycle change."""
    run_id: UUID
    action: str
    actor_id: str
    occurred_at: datetime
    from_status: str | None = None
    to_status: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class LifecycleResult:
    """What a mutating lifecycle operation hands back to its caller."""
    run: PayrollRun
    lines: tuple[PayrollLine, ...] = ()
    audit_event: AuditEvent | None = None
    warnings: tuple[str, ...] = ()
