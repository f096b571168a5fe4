"""
Payroll Run ORM Persistence Models (``payroll_modules.runs.orm``).

Responsibility:
    SQLAlchemy ORM models that persist the frozen dataclass DTOs defined in
    ``payroll_modules.runs.models``.  Each ORM class mirrors a DTO and
    provides ``to_dto()`` / ``from_dto()`` conversion.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.
    Inherits from ``TrackedBase`` (kernel DB base) which provides:
    id (UUID PK), created_at, updated_at.

Invariants enforced:
    - All monetary fields use Decimal (maps to Numeric(38,9)) -- NEVER float.
    - Status stored as String(20) containing the enum .value string.
    - Lines and inputs reference their run by ForeignKey and are unique per
      (run, employee).
    - Rows re-enter the domain only through the strict DTO constructors, so
      a malformed row surfaces as ``InvalidInputError``.

Audit relevance:
    ``version`` is the optimistic concurrency counter; every committed
    lifecycle change increments it by one.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payroll_kernel.db.base import TrackedBase


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# PayrollRunModel
# ---------------------------------------------------------------------------

class PayrollRunModel(TrackedBase):
    """
    ORM model for ``PayrollRun`` -- the run aggregate root and its totals.

    Guarantees:
        - ``pay_month`` / ``pay_year`` are stored denormalised for history
          filtering and always match ``pay_period_start``.
        - ``status`` stores the ``PayrollRunStatus`` .value string.
    """

    __tablename__ = "payroll_runs"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    pay_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    pay_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_month: Mapped[str] = mapped_column(String(7), nullable=False)
    pay_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    run_created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    calculated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_allowances: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_gross_pay: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_taxable_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_paye: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_employee_contribution: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_education_loan_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_loan_repayment: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_salary_advance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_other_deduction: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_net_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_employer_contribution: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_levy_one: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_levy_two: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_payroll_run_status", "status"),
        Index("idx_payroll_run_pay_month", "pay_month"),
        Index("idx_payroll_run_pay_year", "pay_year"),
    )

    _TOTAL_COLUMNS = (
        "total_allowances",
        "total_gross_pay",
        "total_taxable_amount",
        "total_paye",
        "total_employee_contribution",
        "total_education_loan_fee",
        "total_loan_repayment",
        "total_salary_advance",
        "total_other_deduction",
        "total_deductions",
        "total_net_salary",
        "total_employer_contribution",
        "total_levy_one",
        "total_levy_two",
        "employee_count",
    )

    _AUDIT_COLUMNS = (
        "notes",
        "created_by",
        "calculated_by",
        "verified_by",
        "approved_by",
        "processed_by",
        "cancelled_by",
        "cancellation_reason",
    )

    _TIMESTAMP_COLUMNS = (
        "calculated_at",
        "verified_at",
        "approved_at",
        "processed_at",
        "cancelled_at",
    )

    def to_dto(self):
        from payroll_modules.runs.models import PayrollRun, PayrollRunStatus, RunTotals
        totals = RunTotals.from_record({name: getattr(self, name) for name in self._TOTAL_COLUMNS})
        return PayrollRun(
            id=self.id,
            name=self.name,
            pay_period_start=self.pay_period_start,
            pay_period_end=self.pay_period_end,
            status=PayrollRunStatus(self.status),
            totals=totals,
            version=self.version,
            created_at=_aware(self.run_created_at),
            **{name: getattr(self, name) for name in self._AUDIT_COLUMNS},
            **{name: _aware(getattr(self, name)) for name in self._TIMESTAMP_COLUMNS},
        )

    @classmethod
    def column_values(cls, dto) -> dict:
        """Every persisted column of ``dto`` except the primary key."""
        values = {
            "name": dto.name,
            "pay_period_start": dto.pay_period_start,
            "pay_period_end": dto.pay_period_end,
            "pay_month": dto.pay_month,
            "pay_year": dto.pay_year,
            "status": dto.status.value,
            "version": dto.version,
            "run_created_at": dto.created_at,
        }
        for name in cls._AUDIT_COLUMNS + cls._TIMESTAMP_COLUMNS:
            values[name] = getattr(dto, name)
        values.update(dto.totals.as_record())
        return values

    @classmethod
    def from_dto(cls, dto) -> PayrollRunModel:
        return cls(id=dto.id, **cls.column_values(dto))

    def __repr__(self) -> str:
        return f"<PayrollRunModel {self.name} {self.pay_month} ({self.status}, v{self.version})>"


# ---------------------------------------------------------------------------
# CompensationInputModel
# ---------------------------------------------------------------------------

class CompensationInputModel(TrackedBase):
    """ORM model for ``EmployeeCompensationInput`` -- one employee's inputs for one run."""

    __tablename__ = "payroll_compensation_inputs"

    run_id: Mapped[UUID] = mapped_column(ForeignKey("payroll_runs.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[str] = mapped_column(String(100), nullable=False)
    employee_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    employee_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_resident: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    basic_salary: Mapped[Decimal] = mapped_column(nullable=False)
    housing_allowance: Mapped[Decimal] = mapped_column(nullable=False)
    transport_allowance: Mapped[Decimal] = mapped_column(nullable=False)
    other_allowance: Mapped[Decimal] = mapped_column(nullable=False)
    arrears: Mapped[Decimal] = mapped_column(nullable=False)
    education_loan_fee: Mapped[Decimal] = mapped_column(nullable=False)
    loan_repayment: Mapped[Decimal] = mapped_column(nullable=False)
    salary_advance: Mapped[Decimal] = mapped_column(nullable=False)
    other_deduction: Mapped[Decimal] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "employee_id", name="uq_payroll_input_run_employee"),
        Index("idx_payroll_input_run", "run_id"),
    )

    def to_dto(self):
        from payroll_modules.runs.models import EmployeeCompensationInput
        return EmployeeCompensationInput.from_record({
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "employee_number": self.employee_number,
            "is_resident": self.is_resident,
            "basic_salary": self.basic_salary,
            "housing_allowance": self.housing_allowance,
            "transport_allowance": self.transport_allowance,
            "other_allowance": self.other_allowance,
            "arrears": self.arrears,
            "education_loan_fee": self.education_loan_fee,
            "loan_repayment": self.loan_repayment,
            "salary_advance": self.salary_advance,
            "other_deduction": self.other_deduction,
        })

    @classmethod
    def from_dto(cls, dto, run_id: UUID, position: int) -> CompensationInputModel:
        return cls(run_id=run_id, position=position, **dto.as_record())


# ---------------------------------------------------------------------------
# PayrollLineModel
# ---------------------------------------------------------------------------

class PayrollLineModel(TrackedBase):
    """ORM model for ``PayrollLine`` -- the persisted line contract."""

    __tablename__ = "payroll_lines"

    run_id: Mapped[UUID] = mapped_column(ForeignKey("payroll_runs.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[str] = mapped_column(String(100), nullable=False)
    is_resident: Mapped[bool] = mapped_column(Boolean, nullable=False)
    total_allowances: Mapped[Decimal] = mapped_column(nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False)
    paye: Mapped[Decimal] = mapped_column(nullable=False)
    employee_contribution: Mapped[Decimal] = mapped_column(nullable=False)
    education_loan_fee: Mapped[Decimal] = mapped_column(nullable=False)
    loan_repayment: Mapped[Decimal] = mapped_column(nullable=False)
    salary_advance: Mapped[Decimal] = mapped_column(nullable=False)
    other_deduction: Mapped[Decimal] = mapped_column(nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(nullable=False)
    employer_contribution: Mapped[Decimal] = mapped_column(nullable=False)
    levy_one: Mapped[Decimal] = mapped_column(nullable=False)
    levy_two: Mapped[Decimal] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("run_id", "employee_id", name="uq_payroll_line_run_employee"),
        Index("idx_payroll_line_run", "run_id"),
    )

    def to_dto(self):
        from payroll_modules.runs.models import PayrollLine
        return PayrollLine.from_record({
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
            if column.name not in ("id", "run_id", "position", "created_at", "updated_at")
        })

    @classmethod
    def from_dto(cls, dto, run_id: UUID, position: int) -> PayrollLineModel:
        return cls(run_id=run_id, position=position, **dto.as_record())
