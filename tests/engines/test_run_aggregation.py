"""
Tests for the Batch Aggregator.
"""

from decimal import Decimal

from payroll_engines.aggregation import RunTotals, aggregate, totals_field
from payroll_engines.payroll_line import PAYROLL_LINE_FIELDS, compute_line


class TestAggregate:

    def _lines(self, make_input):
        return [
            compute_line(make_input("E1", basic_salary=2500000, housing_allowance=375000)),
            compute_line(make_input("E2", basic_salary=800000, transport_allowance=50000)),
            compute_line(make_input("E3", basic_salary=250000, is_resident=False)),
        ]

    def test_empty_is_all_zeros(self):
        totals = aggregate([])

        assert totals == RunTotals.zero()
        assert totals.employee_count == 0
        assert totals.total_net_salary == Decimal("0")

    def test_sums_every_line_field(self, make_input):
        lines = self._lines(make_input)

        totals = aggregate(lines)

        for name in PAYROLL_LINE_FIELDS:
            assert getattr(totals, totals_field(name)) == sum(getattr(l, name) for l in lines)
        assert totals.total_allowances == Decimal("425000")
        assert totals.employee_count == 3

    def test_order_independent(self, make_input):
        lines = self._lines(make_input)

        assert aggregate(lines) == aggregate(list(reversed(lines)))

    def test_accepts_generator(self, make_input):
        lines = self._lines(make_input)

        assert aggregate(line for line in lines) == aggregate(lines)

    def test_employer_cost(self, scenario_input):
        totals = aggregate([compute_line(scenario_input)])

        assert totals.total_employer_cost == Decimal("2975000") + Decimal("297500") + Decimal("59500")

    def test_record_round_trip_through_strings(self, scenario_input):
        totals = aggregate([compute_line(scenario_input)])
        record = {k: str(v) for k, v in totals.as_record().items()}

        assert RunTotals.from_record(record) == totals


class TestTotalsField:

    def test_prefixed(self):
        assert totals_field("paye") == "total_paye"

    def test_already_total(self):
        assert totals_field("total_deductions") == "total_deductions"
