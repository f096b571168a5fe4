"""
Module: payroll_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    payroll calculators.  This is the canonical import surface for higher
    layers (payroll_modules, payroll_services).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import payroll_kernel and payroll_config only.
    MUST NOT import payroll_modules or payroll_services.

Invariants enforced:
    - Purity: engines never read the clock; no shared mutable state, so
      every calculator is safe to call from any number of threads.
    - Decimal-only arithmetic, rounded half up to whole currency units.
    - Determinism: identical inputs always produce identical outputs.

Failure modes:
    - InvalidInputError on negative, non-finite, fractional or malformed
      monetary input.

Usage:
    from payroll_engines import compute_tax, compute_line, aggregate
"""

from payroll_engines.aggregation import RunTotals, aggregate, totals_field
from payroll_engines.contributions import (
    ContributionCalculator,
    EmployerCharges,
    employee_contribution,
    employer_contribution,
    levy_one,
    levy_two,
    taxable_base,
)
from payroll_engines.payroll_line import (
    INPUT_AMOUNT_FIELDS,
    PAYROLL_LINE_FIELDS,
    EmployeeCompensationInput,
    PayrollLine,
    PayrollLineCalculator,
    compute_line,
)
from payroll_engines.tax import (
    BracketContribution,
    PayeCalculator,
    PayeResult,
    PayeValidation,
    bracket_for,
    compute_tax,
    validate_paye,
)

__all__ = [
    "BracketContribution",
    "ContributionCalculator",
    "EmployeeCompensationInput",
    "EmployerCharges",
    "INPUT_AMOUNT_FIELDS",
    "PAYROLL_LINE_FIELDS",
    "PayeCalculator",
    "PayeResult",
    "PayeValidation",
    "PayrollLine",
    "PayrollLineCalculator",
    "RunTotals",
    "aggregate",
    "bracket_for",
    "compute_line",
    "compute_tax",
    "employee_contribution",
    "employer_contribution",
    "levy_one",
    "levy_two",
    "taxable_base",
    "totals_field",
]
