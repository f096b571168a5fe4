"""
Batch Aggregator - run-level totals over payroll lines.

Sums every numeric line field plus the employee count.  Addition of
``Decimal`` whole units is exact, so totals are independent of line order.
An empty run aggregates to all zeros.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any

from payroll_engines.payroll_line import PAYROLL_LINE_FIELDS, PayrollLine
from payroll_engines.tracer import traced_engine
from payroll_kernel.domain.amounts import ZERO
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.aggregation")

_SUMMED_FIELDS: tuple[str, ...] = ("total_allowances",) + PAYROLL_LINE_FIELDS


@dataclass(frozen=True)
class RunTotals:
    """One summary total per payroll line field, plus employee count."""

    total_allowances: Decimal = ZERO
    total_gross_pay: Decimal = ZERO
    total_taxable_amount: Decimal = ZERO
    total_paye: Decimal = ZERO
    total_employee_contribution: Decimal = ZERO
    total_education_loan_fee: Decimal = ZERO
    total_loan_repayment: Decimal = ZERO
    total_salary_advance: Decimal = ZERO
    total_other_deduction: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net_salary: Decimal = ZERO
    total_employer_contribution: Decimal = ZERO
    total_levy_one: Decimal = ZERO
    total_levy_two: Decimal = ZERO
    employee_count: int = 0

    @classmethod
    def zero(cls) -> RunTotals:
        return cls()

    @property
    def total_employer_cost(self) -> Decimal:
        """Gross pay plus every employer-side charge."""
        return (
            self.total_gross_pay
            + self.total_employer_contribution
            + self.total_levy_one
            + self.total_levy_two
        )

    def as_record(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> RunTotals:
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for name in known:
            if name not in record or record[name] is None:
                continue
            if name == "employee_count":
                values[name] = int(record[name])
            else:
                values[name] = Decimal(str(record[name]))
        return cls(**values)


def totals_field(line_field: str) -> str:
    """Name of the ``RunTotals`` attribute summing ``line_field``."""
    if line_field in ("total_allowances", "total_deductions"):
        return line_field
    return f"total_{line_field}"


@traced_engine("aggregation", "1.0")
def aggregate(lines: Iterable[PayrollLine]) -> RunTotals:
    """Sum ``lines`` into ``RunTotals``; empty input yields all zeros."""
    sums = {name: ZERO for name in _SUMMED_FIELDS}
    count = 0
    for line in lines:
        count += 1
        for name in _SUMMED_FIELDS:
            sums[name] += getattr(line, name)

    totals = RunTotals(
        employee_count=count,
        **{totals_field(name): value for name, value in sums.items()},
    )
    logger.debug("run_totals_aggregated", extra={
        "employee_count": count,
        "total_gross_pay": str(totals.total_gross_pay),
        "total_net_salary": str(totals.total_net_salary),
    })
    return totals
