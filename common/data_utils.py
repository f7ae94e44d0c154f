"""
Money conversion utilities.

All currency values are Decimal quantized to two places. Floats are
converted through their string form so binary rounding noise never
reaches the ledger.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

ZERO = Decimal('0.00')
CENT = Decimal('0.01')


def to_money(value: Any) -> Decimal:
    """
    Convert a value to a two-place Decimal.

    Handles None and empty strings (as zero), ints, floats, numeric strings
    and Decimals.

    Args:
        value: Value to convert

    Returns:
        Decimal: Quantized amount

    Raises:
        ValueError: If the value is not numeric or not finite
    """
    if value is None or value == '':
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")

    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(str(value).strip().replace(',', ''))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_zero(value: Decimal) -> Decimal:
    """Never surface negative balances."""
    return value if value > ZERO else ZERO


def format_amount(value: Any) -> str:
    """
    Format an amount with thousands separators for SMS text.

    Whole amounts drop the decimals ("10,000"); others keep two ("1,250.50").
    """
    amount = to_money(value)
    if amount == amount.to_integral_value():
        return f"{amount:,.0f}"
    return f"{amount:,.2f}"
