"""
PAYE Engine - progressive income tax withheld from monthly salary.

Pure functions with no I/O.  The bracket table comes from
``payroll_config`` (or is passed in explicitly) and is immutable.

Usage:
    from decimal import Decimal
    from payroll_engines.tax import compute_tax

    result = compute_tax(Decimal("1240000"))
    print(result.tax)             # 200000
    print(result.effective_rate)  # 16.13
    for part in result.breakdown():
        print(part.description, part.amount)

Rules:
    Resident: find the single bracket containing the income and charge
    ``fixed_amount + (income - lower) x rate``, rounded half up to whole
    units.  Income above the nil band never yields zero tax; the minimum
    is one unit (so 270,001 owes 1).
    Non-resident: flat ``income x non_resident_rate``, no brackets.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from payroll_config import TaxBracket, TaxTable, get_active_config
from payroll_kernel.domain.amounts import (
    HUNDRED,
    ZERO,
    AmountLike,
    round_half_up,
    to_amount,
    to_decimal,
)
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.tax")

_RATE_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class BracketContribution:
    """
    Share of the tax attributable to one bracket.

    Used for payslip display only; the tax total is never summed from these.
    ``bracket_index`` is ``None`` for the synthetic non-resident entry.
    """

    bracket_index: int | None
    lower: Decimal
    upper: Decimal | None
    rate: Decimal
    taxable_portion: Decimal
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class PayeResult:
    """Outcome of one PAYE computation."""

    taxable_income: Decimal
    is_resident: bool
    tax: Decimal
    effective_rate: Decimal
    table: TaxTable = field(repr=False, compare=False)

    def breakdown(self) -> Iterator[BracketContribution]:
        """Lazily yield the per-bracket contributions behind ``tax``."""
        income = self.taxable_income
        if not self.is_resident:
            rate = self.table.non_resident_rate
            yield BracketContribution(
                bracket_index=None,
                lower=ZERO,
                upper=None,
                rate=rate,
                taxable_portion=income,
                amount=income * rate / HUNDRED,
                description=f"Non-resident flat rate {rate}%",
            )
            return

        for index, bracket in enumerate(self.table.brackets):
            top = income if bracket.upper is None else min(income, bracket.upper)
            portion = max(top - bracket.lower, ZERO)
            yield BracketContribution(
                bracket_index=index,
                lower=bracket.lower,
                upper=bracket.upper,
                rate=bracket.rate,
                taxable_portion=portion,
                amount=portion * bracket.rate / HUNDRED,
                description=bracket.description,
            )
            if bracket.contains(income):
                return


@dataclass(frozen=True)
class PayeValidation:
    """Result of checking a claimed PAYE figure against the engine."""

    is_valid: bool
    expected_tax: Decimal
    claimed_tax: Decimal
    difference: Decimal


class PayeCalculator:
    """
    Compute PAYE from taxable income.

    Pure - no I/O, no clock.  A calculator holds one immutable table; when
    none is given the active statutory configuration supplies it.
    """

    def __init__(self, table: TaxTable | None = None):
        self._table = table

    @property
    def table(self) -> TaxTable:
        if self._table is None:
            self._table = get_active_config().tax_table
        return self._table

    def calculate(self, taxable_income: AmountLike, is_resident: bool = True) -> PayeResult:
        """
        Compute tax owed on ``taxable_income``.

        Raises:
            InvalidInputError: ``reason="negative"``, ``"non_finite"`` or
                ``"out_of_range"``.
        """
        income = to_amount(taxable_income, "taxable_income")
        table = self.table

        if is_resident:
            bracket = self._find_bracket(income)
            tax = round_half_up(
                bracket.fixed_amount + (income - bracket.lower) * bracket.rate / HUNDRED
            )
            if tax == ZERO and income > table.nil_band_upper:
                tax = round_half_up(table.minimum_tax_above_nil_band)
        else:
            tax = round_half_up(income * table.non_resident_rate / HUNDRED)

        if income > ZERO:
            effective_rate = (tax / income * HUNDRED).quantize(
                _RATE_PLACES, rounding=ROUND_HALF_UP
            )
        else:
            effective_rate = ZERO

        logger.debug("paye_calculated", extra={
            "taxable_income": str(income),
            "is_resident": is_resident,
            "tax": str(tax),
            "effective_rate": str(effective_rate),
            "tax_table": table.name,
        })

        return PayeResult(
            taxable_income=income,
            is_resident=is_resident,
            tax=tax,
            effective_rate=effective_rate,
            table=table,
        )

    def bracket_for(self, taxable_income: AmountLike) -> TaxBracket | None:
        """Bracket containing ``taxable_income``; ``None`` for negative or non-finite income."""
        income = to_decimal(taxable_income, "taxable_income")
        if not income.is_finite() or income < ZERO:
            return None
        return self._find_bracket(income)

    def validate(
        self,
        taxable_income: AmountLike,
        claimed_tax: AmountLike,
        tolerance: AmountLike = 1,
        is_resident: bool = True,
    ) -> PayeValidation:
        """Check an externally supplied PAYE figure, allowing ``tolerance`` units of drift."""
        expected = self.calculate(taxable_income, is_resident).tax
        claimed = to_amount(claimed_tax, "claimed_tax")
        allowed = to_amount(tolerance, "tolerance")
        difference = abs(claimed - expected)
        is_valid = difference <= allowed
        if not is_valid:
            logger.info("paye_validation_mismatch", extra={
                "expected_tax": str(expected),
                "claimed_tax": str(claimed),
                "difference": str(difference),
                "tolerance": str(allowed),
            })
        return PayeValidation(
            is_valid=is_valid,
            expected_tax=expected,
            claimed_tax=claimed,
            difference=difference,
        )

    def _find_bracket(self, income: Decimal) -> TaxBracket:
        for bracket in self.table.brackets:
            if bracket.contains(income):
                return bracket
        # Unreachable for a validated table: brackets partition [0, inf)
        raise AssertionError(f"no bracket contains {income}")


def compute_tax(
    taxable_income: AmountLike,
    is_resident: bool = True,
    table: TaxTable | None = None,
) -> PayeResult:
    """Functional entry point; see ``PayeCalculator.calculate``."""
    return PayeCalculator(table).calculate(taxable_income, is_resident)


def bracket_for(taxable_income: AmountLike, table: TaxTable | None = None) -> TaxBracket | None:
    return PayeCalculator(table).bracket_for(taxable_income)


def validate_paye(
    taxable_income: AmountLike,
    claimed_tax: AmountLike,
    tolerance: AmountLike = 1,
    is_resident: bool = True,
    table: TaxTable | None = None,
) -> PayeValidation:
    return PayeCalculator(table).validate(taxable_income, claimed_tax, tolerance, is_resident)
