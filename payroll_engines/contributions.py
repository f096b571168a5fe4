"""
Contribution Calculator - statutory percentage-of-gross charges.

Employee and employer social-security contributions plus the two flat
employer levies (workers compensation and skills development).  Each rate
is configured independently; regulators change them on their own schedules.

Pure functions with no I/O.  Every function rejects negative or
non-finite gross pay with ``InvalidInputError`` and rounds half up to whole
currency units.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from payroll_config import ContributionRates, get_active_config
from payroll_kernel.domain.amounts import AmountLike, percent_of, to_amount
from payroll_kernel.logging_config import get_logger

logger = get_logger("engines.contributions")


@dataclass(frozen=True)
class EmployerCharges:
    """Employer-side costs on top of gross pay."""

    employer_contribution: Decimal
    levy_one: Decimal
    levy_two: Decimal

    @property
    def total(self) -> Decimal:
        return self.employer_contribution + self.levy_one + self.levy_two


class ContributionCalculator:
    """Percentage-of-gross statutory charges for one set of rates."""

    def __init__(self, rates: ContributionRates | None = None):
        self._rates = rates

    @property
    def rates(self) -> ContributionRates:
        if self._rates is None:
            self._rates = get_active_config().contributions
        return self._rates

    def employee_contribution(self, gross_pay: AmountLike) -> Decimal:
        gross = to_amount(gross_pay, "gross_pay")
        return percent_of(gross, self.rates.employee_rate)

    def employer_contribution(self, gross_pay: AmountLike) -> Decimal:
        gross = to_amount(gross_pay, "gross_pay")
        return percent_of(gross, self.rates.employer_rate)

    def taxable_base(self, gross_pay: AmountLike) -> Decimal:
        """Gross pay less the employee contribution; the PAYE base."""
        gross = to_amount(gross_pay, "gross_pay")
        return gross - self.employee_contribution(gross)

    def levy_one(self, gross_pay: AmountLike) -> Decimal:
        gross = to_amount(gross_pay, "gross_pay")
        return percent_of(gross, self.rates.levy_one.rate)

    def levy_two(self, gross_pay: AmountLike) -> Decimal:
        gross = to_amount(gross_pay, "gross_pay")
        return percent_of(gross, self.rates.levy_two.rate)

    def employer_charges(self, gross_pay: AmountLike) -> EmployerCharges:
        gross = to_amount(gross_pay, "gross_pay")
        charges = EmployerCharges(
            employer_contribution=self.employer_contribution(gross),
            levy_one=self.levy_one(gross),
            levy_two=self.levy_two(gross),
        )
        logger.debug("employer_charges_calculated", extra={
            "gross_pay": str(gross),
            "employer_contribution": str(charges.employer_contribution),
            "levy_one": str(charges.levy_one),
            "levy_one_code": self.rates.levy_one.code,
            "levy_two": str(charges.levy_two),
            "levy_two_code": self.rates.levy_two.code,
        })
        return charges


def employee_contribution(gross_pay: AmountLike) -> Decimal:
    return ContributionCalculator().employee_contribution(gross_pay)


def employer_contribution(gross_pay: AmountLike) -> Decimal:
    return ContributionCalculator().employer_contribution(gross_pay)


def taxable_base(gross_pay: AmountLike) -> Decimal:
    return ContributionCalculator().taxable_base(gross_pay)


def levy_one(gross_pay: AmountLike) -> Decimal:
    return ContributionCalculator().levy_one(gross_pay)


def levy_two(gross_pay: AmountLike) -> Decimal:
    return ContributionCalculator().levy_two(gross_pay)
