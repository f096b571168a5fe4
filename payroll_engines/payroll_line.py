"""
Payroll Line Calculator - one employee's fully resolved payroll line.

Composes the Contribution Calculator and the PAYE engine with the raw
allowance and deduction inputs:

    1. gross = basic + housing + transport + arrears + other allowance
    2. employee contribution and taxable amount from gross
    3. PAYE on the taxable amount (resident unless marked otherwise)
    4. total deductions = PAYE + employee contribution + the four
       deduction inputs
    5. net = gross - total deductions, never clamped
    6. employer contribution and both levies from gross

Recomputation always builds a whole new line; lines are never patched.
A negative net salary is a valid, reportable outcome: it is returned as-is,
flagged by ``PayrollLine.is_over_deducted`` and logged at WARNING.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from payroll_config import StatutoryConfig
from payroll_engines.contributions import ContributionCalculator
from payroll_engines.tax import PayeCalculator
from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.amounts import ZERO, require_whole_units
from payroll_kernel.exceptions import InvalidInputError
from payroll_kernel.logging_config import LogContext, get_logger

logger = get_logger("engines.payroll_line")

# Persisted line contract, in display order.
PAYROLL_LINE_FIELDS: tuple[str, ...] = (
    "gross_pay",
    "taxable_amount",
    "paye",
    "employee_contribution",
    "education_loan_fee",
    "loan_repayment",
    "salary_advance",
    "other_deduction",
    "total_deductions",
    "net_salary",
    "employer_contribution",
    "levy_one",
    "levy_two",
)

INPUT_AMOUNT_FIELDS: tuple[str, ...] = (
    "basic_salary",
    "housing_allowance",
    "transport_allowance",
    "other_allowance",
    "arrears",
    "education_loan_fee",
    "loan_repayment",
    "salary_advance",
    "other_deduction",
)

_REQUIRED_INPUT_KEYS = frozenset({"employee_id", "basic_salary"})
_OPTIONAL_INPUT_KEYS = frozenset(
    {"employee_name", "employee_number", "is_resident"}
    | (set(INPUT_AMOUNT_FIELDS) - {"basic_salary"})
)


@dataclass(frozen=True)
class EmployeeCompensationInput:
    """
    One employee's raw compensation for one run.

    Amounts are whole currency units; ints and numeric strings are coerced
    to ``Decimal`` at construction and anything negative, non-finite or
    fractional is rejected.
    """

    employee_id: str
    basic_salary: Decimal
    housing_allowance: Decimal = ZERO
    transport_allowance: Decimal = ZERO
    other_allowance: Decimal = ZERO
    arrears: Decimal = ZERO
    education_loan_fee: Decimal = ZERO
    loan_repayment: Decimal = ZERO
    salary_advance: Decimal = ZERO
    other_deduction: Decimal = ZERO
    is_resident: bool = True
    employee_name: str | None = None
    employee_number: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.employee_id, str) or not self.employee_id.strip():
            raise InvalidInputError(
                "employee_id", self.employee_id, InvalidInputError.SCHEMA,
                "employee_id must be a non-empty string",
            )
        if not isinstance(self.is_resident, bool):
            raise InvalidInputError(
                "is_resident", self.is_resident, InvalidInputError.SCHEMA,
                "is_resident must be a boolean",
            )
        for name in INPUT_AMOUNT_FIELDS:
            object.__setattr__(self, name, require_whole_units(getattr(self, name), name))

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> EmployeeCompensationInput:
        """
        Build an input from an untyped row, rejecting unknown or missing keys.

        This is the boundary check for rows coming from storage or imports.
        """
        if not isinstance(record, Mapping):
            raise InvalidInputError(
                "record", record, InvalidInputError.SCHEMA, "expected a mapping"
            )
        keys = set(record)
        missing = _REQUIRED_INPUT_KEYS - keys
        if missing:
            raise InvalidInputError(
                "record", sorted(missing), InvalidInputError.SCHEMA,
                f"missing required keys: {', '.join(sorted(missing))}",
            )
        unknown = keys - _REQUIRED_INPUT_KEYS - _OPTIONAL_INPUT_KEYS
        if unknown:
            raise InvalidInputError(
                "record", sorted(unknown), InvalidInputError.SCHEMA,
                f"unknown keys: {', '.join(sorted(unknown))}",
            )

        employee_id = record["employee_id"]
        kwargs: dict[str, Any] = {
            "employee_id": str(employee_id) if employee_id is not None else employee_id,
            "is_resident": record.get("is_resident", True),
            "employee_name": record.get("employee_name"),
            "employee_number": record.get("employee_number"),
        }
        for name in INPUT_AMOUNT_FIELDS:
            value = record.get(name, ZERO)
            kwargs[name] = ZERO if value is None and name != "basic_salary" else value
        return cls(**kwargs)

    def as_record(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def gross_pay(self) -> Decimal:
        return (
            self.basic_salary
            + self.housing_allowance
            + self.transport_allowance
            + self.arrears
            + self.other_allowance
        )


@dataclass(frozen=True)
class PayrollLine:
    """A computed payroll line; immutable once produced."""

    employee_id: str
    is_resident: bool
    total_allowances: Decimal
    gross_pay: Decimal
    taxable_amount: Decimal
    paye: Decimal
    employee_contribution: Decimal
    education_loan_fee: Decimal
    loan_repayment: Decimal
    salary_advance: Decimal
    other_deduction: Decimal
    total_deductions: Decimal
    net_salary: Decimal
    employer_contribution: Decimal
    levy_one: Decimal
    levy_two: Decimal

    @property
    def is_over_deducted(self) -> bool:
        return self.net_salary < ZERO

    def as_record(self) -> dict[str, Any]:
        """Persisted shape of the line."""
        record: dict[str, Any] = {
            "employee_id": self.employee_id,
            "is_resident": self.is_resident,
            "total_allowances": self.total_allowances,
        }
        for name in PAYROLL_LINE_FIELDS:
            record[name] = getattr(self, name)
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> PayrollLine:
        """Rebuild a stored line, checking the arithmetic still holds."""
        try:
            values = {
                name: Decimal(str(record[name]))
                for name in ("total_allowances",) + PAYROLL_LINE_FIELDS
            }
            line = cls(
                employee_id=str(record["employee_id"]),
                is_resident=bool(record["is_resident"]),
                **values,
            )
        except KeyError as exc:
            raise InvalidInputError(
                "record", exc.args[0], InvalidInputError.SCHEMA, "missing line field"
            ) from exc
        except InvalidOperation as exc:
            raise InvalidInputError(
                "record", record.get("employee_id"), InvalidInputError.NOT_A_NUMBER,
                "line amount is not a number",
            ) from exc
        expected_deductions = (
            line.paye
            + line.employee_contribution
            + line.education_loan_fee
            + line.loan_repayment
            + line.salary_advance
            + line.other_deduction
        )
        if line.total_deductions != expected_deductions or (
            line.net_salary != line.gross_pay - line.total_deductions
        ):
            raise InvalidInputError(
                "record", line.employee_id, InvalidInputError.SCHEMA,
                "stored line totals do not reconcile",
            )
        return line


class PayrollLineCalculator:
    """
    Turn compensation inputs into payroll lines.

    Pure - the only collaborators are the PAYE and contribution
    calculators, both deterministic.
    """

    def __init__(
        self,
        paye: PayeCalculator | None = None,
        contributions: ContributionCalculator | None = None,
    ):
        self._paye = paye or PayeCalculator()
        self._contributions = contributions or ContributionCalculator()

    @classmethod
    def from_config(cls, config: StatutoryConfig) -> PayrollLineCalculator:
        return cls(
            paye=PayeCalculator(config.tax_table),
            contributions=ContributionCalculator(config.contributions),
        )

    @traced_engine("payroll_line", "1.0", fingerprint_fields=("compensation",))
    def compute(self, compensation: EmployeeCompensationInput) -> PayrollLine:
        with LogContext.bind(employee_id=compensation.employee_id):
            return self._compute(compensation)

    def _compute(self, compensation: EmployeeCompensationInput) -> PayrollLine:
        gross_pay = compensation.gross_pay

        employee_contribution = self._contributions.employee_contribution(gross_pay)
        taxable_amount = self._contributions.taxable_base(gross_pay)

        paye = self._paye.calculate(taxable_amount, compensation.is_resident).tax

        total_deductions = (
            paye
            + employee_contribution
            + compensation.education_loan_fee
            + compensation.loan_repayment
            + compensation.salary_advance
            + compensation.other_deduction
        )
        net_salary = gross_pay - total_deductions

        charges = self._contributions.employer_charges(gross_pay)

        line = PayrollLine(
            employee_id=compensation.employee_id,
            is_resident=compensation.is_resident,
            total_allowances=(
                compensation.housing_allowance
                + compensation.transport_allowance
                + compensation.other_allowance
            ),
            gross_pay=gross_pay,
            taxable_amount=taxable_amount,
            paye=paye,
            employee_contribution=employee_contribution,
            education_loan_fee=compensation.education_loan_fee,
            loan_repayment=compensation.loan_repayment,
            salary_advance=compensation.salary_advance,
            other_deduction=compensation.other_deduction,
            total_deductions=total_deductions,
            net_salary=net_salary,
            employer_contribution=charges.employer_contribution,
            levy_one=charges.levy_one,
            levy_two=charges.levy_two,
        )

        if line.is_over_deducted:
            logger.warning("payroll_line_negative_net_salary", extra={
                "gross_pay": str(line.gross_pay),
                "total_deductions": str(line.total_deductions),
                "net_salary": str(line.net_salary),
            })

        logger.debug("payroll_line_computed", extra={
            "gross_pay": str(line.gross_pay),
            "paye": str(line.paye),
            "net_salary": str(line.net_salary),
        })
        return line


def compute_line(compensation: EmployeeCompensationInput) -> PayrollLine:
    """Compute one line with the active statutory configuration."""
    return PayrollLineCalculator().compute(compensation)
