"""
Monetary Amount Module

Normalises ledger amounts to Decimal with fixed minor-unit precision.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Iterable, Union

# Set global decimal context for financial precision
getcontext().prec = 28

AMOUNT_PRECISION = 2
ZERO = Decimal('0')
DEFAULT_TOLERANCE = Decimal('0.01')

AmountLike = Union[Decimal, int, str, float]


def to_amount(value: AmountLike, precision: int = AMOUNT_PRECISION) -> Decimal:
    """
    Convert a value to a Decimal rounded to the ledger precision

    Floats are routed through str() so 0.1 stays 0.1 instead of its
    binary approximation.

    Raises:
        ValueError: If the value cannot be read as a number
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    return value.quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)


def sum_amounts(values: Iterable[Decimal]) -> Decimal:
    """Sum amounts starting from an exact Decimal zero"""
    total = ZERO
    for value in values:
        total += value
    return total


def within_tolerance(left: Decimal, right: Decimal,
                     tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """Check that two amounts differ by no more than the tolerance"""
    return abs(left - right) <= tolerance


def format_amount(amount: Decimal, precision: int = AMOUNT_PRECISION) -> str:
    """Format for display with thousands separators"""
    return f"{amount:,.{precision}f}"
