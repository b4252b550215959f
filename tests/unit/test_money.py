"""
Unit tests for the money helpers: cent rounding and drift-free sums.
"""

from decimal import Decimal

import pytest

from src.core.money import ZERO, round2, sum_rounded, to_decimal


class TestToDecimal:

    def test_none_is_zero(self):
        assert to_decimal(None) == ZERO

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_decimal_passthrough(self):
        value = Decimal("12.345")
        assert to_decimal(value) is value

    def test_garbage_raises_value_error(self):
        with pytest.raises(ValueError):
            to_decimal("twelve")


class TestRound2:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("0.005", "0.01"),
            ("0.004", "0.00"),
            ("2.675", "2.68"),
            ("-1.005", "-1.01"),
            (10, "10.00"),
        ],
    )
    def test_half_up(self, raw, expected):
        assert round2(raw) == Decimal(expected)

    def test_commission_example(self):
        """10% of 333.33 is 33.333, booked as 33.33."""
        assert round2(Decimal("333.33") * Decimal("0.10")) == Decimal("33.33")


class TestSumRounded:

    def test_empty_is_zero(self):
        assert sum_rounded([]) == ZERO

    def test_sum_of_cents(self):
        assert sum_rounded([Decimal("0.10")] * 3) == Decimal("0.30")

    def test_floats_do_not_drift(self):
        assert sum_rounded([0.1, 0.2]) == Decimal("0.30")

    def test_none_entries_count_as_zero(self):
        assert sum_rounded([Decimal("1.50"), None]) == Decimal("1.50")
