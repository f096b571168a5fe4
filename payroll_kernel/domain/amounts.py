"""
Whole-unit amount arithmetic (``payroll_kernel.domain.amounts``).

Responsibility:
    Coerce caller-supplied monetary values into ``Decimal`` and apply the
    single rounding rule used by every calculator: round half up to the
    nearest whole currency unit.  The system is single-currency and has no
    fractional sub-units.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - All arithmetic is ``Decimal``; floats are converted through ``str`` so
      that 0.1 stays 0.1.
    - Rounding is ROUND_HALF_UP, never banker's rounding.

Failure modes:
    - InvalidInputError(reason="not_a_number") for values that cannot be read
      as a number (including ``bool``).
    - InvalidInputError(reason="non_finite") for NaN and +/-Infinity.
    - InvalidInputError(reason="negative") for values below zero.
    - InvalidInputError(reason="out_of_range") for values above MAX_AMOUNT.
    - InvalidInputError(reason="fractional") from ``require_whole_units``.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from payroll_kernel.exceptions import InvalidInputError

AmountLike = Union[Decimal, int, float, str]

ZERO = Decimal("0")
WHOLE_UNIT = Decimal("1")
HUNDRED = Decimal("100")

# Largest accepted input.  Line sums and run totals built from it stay well
# inside the 28-digit decimal context and the Numeric(38, 9) columns.
MAX_AMOUNT = Decimal("999999999999999999")


def to_decimal(value: AmountLike, field: str) -> Decimal:
    """Convert ``value`` to Decimal without any range checks."""
    if isinstance(value, bool):
        raise InvalidInputError(field, value, InvalidInputError.NOT_A_NUMBER)
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInputError(field, value, InvalidInputError.NOT_A_NUMBER) from None


def to_amount(value: AmountLike, field: str = "amount") -> Decimal:
    """
    Validate a monetary input and return it as Decimal.

    Non-finite is checked before sign so that ``-Infinity`` reports
    ``non_finite`` rather than ``negative``.
    """
    amount = to_decimal(value, field)
    if not amount.is_finite():
        raise InvalidInputError(field, value, InvalidInputError.NON_FINITE)
    if amount < ZERO:
        raise InvalidInputError(field, value, InvalidInputError.NEGATIVE)
    if amount > MAX_AMOUNT:
        raise InvalidInputError(
            field, value, InvalidInputError.OUT_OF_RANGE,
            f"amounts above {MAX_AMOUNT} are not accepted",
        )
    return amount


def require_whole_units(value: AmountLike, field: str = "amount") -> Decimal:
    """Validate a monetary input that must already be in whole currency units."""
    amount = to_amount(value, field)
    if amount != amount.to_integral_value():
        raise InvalidInputError(
            field, value, InvalidInputError.FRACTIONAL,
            "amounts are whole currency units",
        )
    return amount.quantize(WHOLE_UNIT)


def round_half_up(value: Decimal) -> Decimal:
    """Round to the nearest whole currency unit, halves away from zero."""
    return value.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate_percent: Decimal) -> Decimal:
    """``amount x rate_percent / 100`` rounded half up to whole units."""
    return round_half_up(amount * rate_percent / HUNDRED)
