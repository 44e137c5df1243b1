"""
Currency and Decimal Helpers

ISO 4217 currency codes and the Decimal conversion/rounding helpers used at
presentation and persistence boundaries. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from enum import Enum
from typing import Any, Optional
import re

from .exceptions import InvalidArgumentError

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0')


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    ZMW = ("ZMW", 2)  # Zambian Kwacha
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    GBP = ("GBP", 2)  # British Pound
    KES = ("KES", 2)  # Kenyan Shilling
    UGX = ("UGX", 0)  # Ugandan Shilling, no minor unit

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        return Decimal('0.1') ** self.precision


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Convert an input to Decimal, failing fast on missing or malformed values

    Args:
        value: Decimal, int, str or float
        field_name: Name used in the error message

    Returns:
        Decimal value

    Raises:
        InvalidArgumentError: If value is None, non-numeric or not finite
    """
    if value is None:
        raise InvalidArgumentError(f"{field_name} is required")
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{field_name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = decimal_from_string(value, field_name)
    else:
        raise InvalidArgumentError(f"{field_name} must be numeric, got {type(value).__name__}")

    if not result.is_finite():
        raise InvalidArgumentError(f"{field_name} must be a finite number")
    return result


def decimal_from_string(value: str, field_name: str = "value") -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number
        field_name: Name used in the error message

    Returns:
        Decimal value

    Raises:
        InvalidArgumentError: If string cannot be converted to valid Decimal
    """
    if not value or not value.strip():
        raise InvalidArgumentError(f"{field_name} must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+eE]', '', value.strip())

    # Both comma and dot - assume comma is thousands separator
    if ',' in clean_value and '.' in clean_value:
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Likely decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Likely thousands separator
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise InvalidArgumentError(f"Cannot convert {field_name} '{value}' to Decimal")


def round_money(value: Decimal, currency: Optional[Currency] = None) -> Decimal:
    """
    Round to the currency's minor unit (two places when no currency is given)
    using ROUND_HALF_UP. Only call this at emission/persistence boundaries.
    """
    quantum = currency.quantum if currency else CENT
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal, currency: Currency) -> str:
    """Format for display"""
    rounded = round_money(value, currency)
    if currency.precision == 0:
        return f"{currency.code} {rounded:,.0f}"
    return f"{currency.code} {rounded:,.{currency.precision}f}"
