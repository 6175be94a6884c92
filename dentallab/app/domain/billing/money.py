"""
Money helpers.

Amounts are Decimals quantized to cents; floats never enter the ledger.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce a number, string or Decimal to a cent-quantized Decimal.

    None becomes zero. Raises decimal.InvalidOperation for garbage input.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = repr(value)
    amount = Decimal(value)
    if not amount.is_finite():
        raise InvalidOperation(f"Non-finite amount: {value}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def is_positive_amount(value: Any) -> bool:
    try:
        return to_money(value) > ZERO
    except (InvalidOperation, ValueError, TypeError):
        return False
