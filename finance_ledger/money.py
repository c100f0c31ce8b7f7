"""
Fixed-Point Amounts

Ledger amounts are Decimals quantized to two fraction digits. NEVER uses
float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Optional

# Set global decimal context for financial precision
getcontext().prec = 28

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Any) -> Decimal:
    """Convert a Decimal, int or numeric string to a two-place Decimal"""
    if isinstance(value, float):
        # Go through str so 0.1 stays 0.1
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    return amount.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def to_optional_amount(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_amount(value)
