"""
Test suite for currency and Decimal helpers
"""

import pytest
from decimal import Decimal

from loan_engine.currency import (
    Currency, decimal_from_string, format_amount, round_money, to_decimal
)
from loan_engine.exceptions import InvalidArgumentError


class TestToDecimal:
    """Test input conversion"""

    @pytest.mark.parametrize("value,expected", [
        (Decimal('1.5'), Decimal('1.5')),
        (3, Decimal('3')),
        (0.1, Decimal('0.1')),
        ("12,000.50", Decimal('12000.50')),
        ("ZMW 1,000", Decimal('1000')),
        ("99,5", Decimal('99.5')),
    ])
    def test_conversion(self, value, expected):
        assert to_decimal(value) == expected

    @pytest.mark.parametrize("value", [None, True, "", "   ", "abc", [1], Decimal('NaN'), "Infinity"])
    def test_rejected(self, value):
        with pytest.raises(InvalidArgumentError):
            to_decimal(value, "amount")

    def test_field_name_in_message(self):
        with pytest.raises(InvalidArgumentError, match="principal"):
            to_decimal(None, "principal")


class TestRounding:
    """Test boundary rounding"""

    def test_half_up(self):
        assert round_money(Decimal('2.345')) == Decimal('2.35')
        assert round_money(Decimal('2.344')) == Decimal('2.34')
        assert round_money(Decimal('-2.345')) == Decimal('-2.35')

    def test_currency_precision(self):
        assert round_money(Decimal('1066.5'), Currency.UGX) == Decimal('1067')
        assert round_money(Decimal('1066.185'), Currency.USD) == Decimal('1066.19')

    def test_format_amount(self):
        assert format_amount(Decimal('12000'), Currency.ZMW) == "ZMW 12,000.00"
        assert format_amount(Decimal('12000.4'), Currency.UGX) == "UGX 12,000"

    def test_decimal_from_string_thousands(self):
        assert decimal_from_string("1,234,567") == Decimal('1234567')
