"""
Tests for the relative SSP allocation engine.

Covers:
- Worked examples ($120,000 and $100,000 contracts)
- Observable-price lines excluded from the proportional pool
- Quantity-weighted standalone values
- Rounding remainder on the last proportional line
- Degenerate pools and observable totals above the transaction price
- Sum exactness for arbitrary inputs (hypothesis)
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from revrec_engines.allocation import AllocationLineInput, allocate_relative_ssp
from revrec_kernel.exceptions import (
    AllocationDegenerateError,
    ObservablePriceExceedsTotalError,
)


class TestWorkedExamples:
    """The two contracts every reviewer checks first."""

    def test_ssps_matching_the_total_allocate_unchanged(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("120000.00"),
            lines=[
                AllocationLineInput(line_ref=1, unit_ssp=Decimal("50000.00")),
                AllocationLineInput(line_ref=2, unit_ssp=Decimal("70000.00")),
            ],
        )

        assert result.for_line(1).allocated_price == Decimal("50000.00")
        assert result.for_line(2).allocated_price == Decimal("70000.00")
        assert result.total_allocated == Decimal("120000.00")

    def test_rounding_difference_lands_on_second_line(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("100000.00"),
            lines=[
                AllocationLineInput(line_ref=1, unit_ssp=Decimal("33333.33")),
                AllocationLineInput(line_ref=2, unit_ssp=Decimal("33333.34")),
            ],
        )

        first = result.for_line(1).allocated_price
        second = result.for_line(2).allocated_price
        assert first == Decimal("49999.99")
        assert second == Decimal("100000.00") - first
        assert first + second == Decimal("100000.00")


class TestPoolComposition:
    def test_observable_line_keeps_its_price(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("10000.00"),
            lines=[
                AllocationLineInput(line_ref="hw", observable_price=Decimal("4000.00")),
                AllocationLineInput(line_ref="a", unit_ssp=Decimal("3000.00")),
                AllocationLineInput(line_ref="b", unit_ssp=Decimal("9000.00")),
            ],
        )

        assert result.for_line("hw").allocated_price == Decimal("4000.00")
        assert result.for_line("hw").is_observable
        assert result.observable_total == Decimal("4000.00")
        assert result.remainder_pool == Decimal("6000.00")
        assert result.for_line("a").allocated_price == Decimal("1500.00")
        assert result.for_line("b").allocated_price == Decimal("4500.00")

    def test_quantity_scales_standalone_value(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("900.00"),
            lines=[
                AllocationLineInput(line_ref=1, quantity=Decimal("2"), unit_ssp=Decimal("100")),
                AllocationLineInput(line_ref=2, quantity=Decimal("1"), unit_ssp=Decimal("100")),
            ],
        )

        assert result.for_line(1).estimated_standalone_value == Decimal("200")
        assert result.for_line(1).allocated_price == Decimal("600.00")
        assert result.for_line(2).allocated_price == Decimal("300.00")

    def test_lines_returned_in_input_order(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("3.00"),
            lines=[
                AllocationLineInput(line_ref=3, unit_ssp=Decimal("1")),
                AllocationLineInput(line_ref=1, unit_ssp=Decimal("1")),
                AllocationLineInput(line_ref=2, unit_ssp=Decimal("1")),
            ],
        )

        assert [line.line_ref for line in result.lines] == [3, 1, 2]

    def test_single_line_takes_whole_price(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("1234.56"),
            lines=[AllocationLineInput(line_ref=1, unit_ssp=Decimal("999.99"))],
        )

        assert result.for_line(1).allocated_price == Decimal("1234.56")

    def test_zero_decimal_currency(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("1000"),
            lines=[
                AllocationLineInput(line_ref=1, unit_ssp=Decimal("1")),
                AllocationLineInput(line_ref=2, unit_ssp=Decimal("1")),
                AllocationLineInput(line_ref=3, unit_ssp=Decimal("1")),
            ],
            decimal_places=0,
        )

        assert [line.allocated_price for line in result.lines] == [
            Decimal("333"),
            Decimal("334"),
            Decimal("333"),
        ]

    def test_tiny_total_over_many_lines_never_negative(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("0.02"),
            lines=[AllocationLineInput(line_ref=i, unit_ssp=Decimal("1")) for i in range(4)],
        )

        assert [line.allocated_price for line in result.lines] == [
            Decimal("0.01"),
            Decimal("0.00"),
            Decimal("0.01"),
            Decimal("0.00"),
        ]
        assert result.total_allocated == Decimal("0.02")


class TestAllocationErrors:
    def test_zero_ssp_pool_is_degenerate(self):
        with pytest.raises(AllocationDegenerateError) as exc_info:
            allocate_relative_ssp(
                total_transaction_price=Decimal("500.00"),
                lines=[
                    AllocationLineInput(line_ref=1, unit_ssp=Decimal("0")),
                    AllocationLineInput(line_ref=2, unit_ssp=Decimal("0")),
                ],
            )

        assert exc_info.value.code == "ALLOCATION_DEGENERATE"

    def test_remainder_without_proportional_line_is_degenerate(self):
        with pytest.raises(AllocationDegenerateError):
            allocate_relative_ssp(
                total_transaction_price=Decimal("500.00"),
                lines=[AllocationLineInput(line_ref=1, observable_price=Decimal("400.00"))],
            )

    def test_all_observable_lines_matching_total_is_fine(self):
        result = allocate_relative_ssp(
            total_transaction_price=Decimal("500.00"),
            lines=[
                AllocationLineInput(line_ref=1, observable_price=Decimal("200.00")),
                AllocationLineInput(line_ref=2, observable_price=Decimal("300.00")),
            ],
        )

        assert result.total_allocated == Decimal("500.00")

    def test_observable_prices_above_total(self):
        with pytest.raises(ObservablePriceExceedsTotalError):
            allocate_relative_ssp(
                total_transaction_price=Decimal("100.00"),
                lines=[
                    AllocationLineInput(line_ref=1, observable_price=Decimal("150.00")),
                    AllocationLineInput(line_ref=2, unit_ssp=Decimal("10.00")),
                ],
            )

    def test_line_without_any_price_rejected(self):
        with pytest.raises(ValueError):
            AllocationLineInput(line_ref=1)

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError):
            AllocationLineInput(line_ref=1, quantity=Decimal("-1"), unit_ssp=Decimal("10"))


money = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


@pytest.mark.slow
class TestSumExactnessProperty:
    @settings(max_examples=200, deadline=None)
    @given(
        total=money,
        ssps=st.lists(money, min_size=1, max_size=8),
        quantities=st.lists(st.integers(min_value=1, max_value=50), min_size=8, max_size=8),
    )
    def test_allocations_sum_to_total(self, total, ssps, quantities):
        lines = [
            AllocationLineInput(line_ref=i, quantity=Decimal(quantities[i]), unit_ssp=ssp)
            for i, ssp in enumerate(ssps)
        ]

        result = allocate_relative_ssp(total_transaction_price=total, lines=lines)

        assert result.total_allocated == total
        for line in result.lines[:-1]:
            assert line.allocated_price == line.allocated_price.quantize(Decimal("0.01"))
        assert all(line.allocated_price >= 0 for line in result.lines)
