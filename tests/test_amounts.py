"""
Test suite for amount normalisation

CRITICAL: money never passes through float arithmetic.
"""

import pytest
from decimal import Decimal

from core_accounting.amounts import (
    ZERO, format_amount, sum_amounts, to_amount, within_tolerance
)


class TestToAmount:
    """Test conversion of loose input to ledger amounts"""

    def test_string_and_int_inputs(self):
        """Test strings and ints become two-decimal Decimals"""
        assert to_amount("100") == Decimal('100.00')
        assert to_amount(42) == Decimal('42.00')
        assert str(to_amount("19000")) == "19000.00"

    def test_float_goes_through_str(self):
        """Test that 0.1 stays 0.1 rather than its binary approximation"""
        assert to_amount(0.1) == Decimal('0.10')
        assert to_amount(0.1) + to_amount(0.2) == Decimal('0.30')

    def test_rounds_half_up(self):
        """Test banker-style rounding is not used"""
        assert to_amount("2.345") == Decimal('2.35')
        assert to_amount("2.344") == Decimal('2.34')
        assert to_amount("-2.345") == Decimal('-2.35')

    def test_custom_precision(self):
        assert to_amount("1.23456", precision=4) == Decimal('1.2346')

    @pytest.mark.parametrize("value", ["abc", "", None, True, "NaN", "Infinity"])
    def test_invalid_values_rejected(self, value):
        """Test that non-numeric input raises ValueError"""
        with pytest.raises(ValueError, match="Invalid amount"):
            to_amount(value)


class TestAmountHelpers:
    """Test summing, comparison and display helpers"""

    def test_sum_empty_is_exact_zero(self):
        total = sum_amounts([])
        assert total == ZERO
        assert isinstance(total, Decimal)

    def test_sum_amounts(self):
        assert sum_amounts([Decimal('0.10'), Decimal('0.20')]) == Decimal('0.30')

    def test_within_tolerance(self):
        """Test the one-cent default tolerance is inclusive"""
        assert within_tolerance(Decimal('100.00'), Decimal('100.01'))
        assert not within_tolerance(Decimal('100.00'), Decimal('100.02'))
        assert within_tolerance(Decimal('100.00'), Decimal('100.50'), Decimal('0.50'))

    def test_format_amount(self):
        assert format_amount(Decimal('1234567.5')) == "1,234,567.50"
