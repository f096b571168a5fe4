"""
Statutory configuration schema.

Frozen dataclasses describing the statutory tables the engines read: the
resident PAYE bracket table, the non-resident withholding rate, the
statutory contribution rates and the two employer levies, plus lifecycle
settings.  YAML files are parsed into these types by the loader; engines and
services only ever see these types.

All rates are percents held as ``Decimal`` (``Decimal("10")`` is 10%).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from payroll_kernel.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# PAYE
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxBracket:
    """
    One band of the resident PAYE table.

    ``lower`` is the threshold the marginal rate applies above; ``upper``
    is inclusive and ``None`` for the open top band.  ``fixed_amount`` is the
    cumulative tax owed on all income up to ``lower``.
    """

    lower: Decimal
    upper: Decimal | None
    rate: Decimal
    fixed_amount: Decimal
    description: str = ""

    def contains(self, income: Decimal) -> bool:
        if income < self.lower:
            return False
        if self.upper is not None and income > self.upper:
            return False
        return income > self.lower or self.lower == 0

    def tax_at_upper(self) -> Decimal | None:
        """Cumulative (unrounded) tax at this band's upper bound."""
        if self.upper is None:
            return None
        return self.fixed_amount + (self.upper - self.lower) * self.rate / Decimal("100")


@dataclass(frozen=True)
class TaxTable:
    """An effective-dated resident bracket table plus the non-resident rate."""

    name: str
    effective_from: date
    brackets: tuple[TaxBracket, ...]
    non_resident_rate: Decimal
    minimum_tax_above_nil_band: Decimal = Decimal("1")

    def __post_init__(self) -> None:
        validate_brackets(self.name, self.brackets)
        if not Decimal("0") <= self.non_resident_rate <= Decimal("100"):
            raise ConfigurationError(
                self.name, f"non_resident_rate {self.non_resident_rate} outside 0..100"
            )
        if self.minimum_tax_above_nil_band < 0:
            raise ConfigurationError(self.name, "minimum_tax_above_nil_band cannot be negative")

    @property
    def nil_band_upper(self) -> Decimal:
        """Upper bound of the leading zero-rate band (0 if the table has none)."""
        first = self.brackets[0]
        if first.rate == 0 and first.upper is not None:
            return first.upper
        return Decimal("0")


def validate_brackets(source: str, brackets: tuple[TaxBracket, ...]) -> None:
    """
    Check the bracket table partitions ``[0, inf)`` and the fixed amounts
    are consistent with the marginal rates below them.
    """
    if not brackets:
        raise ConfigurationError(source, "bracket table is empty")
    if brackets[0].lower != 0:
        raise ConfigurationError(source, "first bracket must start at 0")
    if brackets[0].fixed_amount != 0:
        raise ConfigurationError(source, "first bracket fixed_amount must be 0")
    if brackets[-1].upper is not None:
        raise ConfigurationError(source, "last bracket must be open-ended")

    for i, bracket in enumerate(brackets):
        if not Decimal("0") <= bracket.rate <= Decimal("100"):
            raise ConfigurationError(source, f"bracket {i} rate {bracket.rate} outside 0..100")
        if bracket.upper is not None and bracket.upper <= bracket.lower:
            raise ConfigurationError(source, f"bracket {i} upper must exceed lower")
        if i == 0:
            continue
        prev = brackets[i - 1]
        if prev.upper is None:
            raise ConfigurationError(source, f"bracket {i - 1} is open-ended but not last")
        if bracket.lower != prev.upper:
            raise ConfigurationError(
                source,
                f"bracket {i} starts at {bracket.lower}, expected {prev.upper} (gap or overlap)",
            )
        expected = prev.tax_at_upper()
        if bracket.fixed_amount != expected:
            raise ConfigurationError(
                source,
                f"bracket {i} fixed_amount {bracket.fixed_amount} != {expected}",
            )


# ---------------------------------------------------------------------------
# Contributions and levies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LevyDef:
    """A flat employer-only percentage-of-gross levy."""

    code: str
    rate: Decimal
    description: str = ""


@dataclass(frozen=True)
class ContributionRates:
    """Statutory contribution rates; employee and employer set independently."""

    employee_rate: Decimal = Decimal("10")
    employer_rate: Decimal = Decimal("10")
    levy_one: LevyDef = field(default_factory=lambda: LevyDef("WCF", Decimal("1")))
    levy_two: LevyDef = field(default_factory=lambda: LevyDef("SDL", Decimal("1")))

    def __post_init__(self) -> None:
        for name, rate in (
            ("employee_rate", self.employee_rate),
            ("employer_rate", self.employer_rate),
            ("levy_one", self.levy_one.rate),
            ("levy_two", self.levy_two.rate),
        ):
            if not Decimal("0") <= rate <= Decimal("100"):
                raise ConfigurationError("contributions", f"{name} {rate} outside 0..100")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LifecycleSettings:
    """Run lifecycle knobs."""

    approver_roles: tuple[str, ...] = ("payroll_approver", "finance_manager")
    # 0 means fail fast when another operation holds the run
    lock_timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        if not self.approver_roles:
            raise ConfigurationError("lifecycle", "approver_roles cannot be empty")
        if self.lock_timeout_seconds < 0:
            raise ConfigurationError("lifecycle", "lock_timeout_seconds cannot be negative")


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatutoryConfig:
    """Everything the engines and the lifecycle read from configuration."""

    jurisdiction: str
    currency: str
    tax_table: TaxTable
    contributions: ContributionRates
    lifecycle: LifecycleSettings
    checksum: str = ""
    source: str = ""
