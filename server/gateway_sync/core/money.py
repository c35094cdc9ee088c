"""Conversion between gateway minor units (integer cents) and local decimal amounts."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENTS = Decimal("0.01")
MINOR_PER_MAJOR = 100

Amount = Union[Decimal, int, str, float]


def _as_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, bool):
        raise TypeError("amount must be numeric, not bool")
    # floats go through str() so 19.99 stays 19.99 instead of its binary expansion
    return Decimal(str(amount))


def to_minor_units(amount: Amount) -> int:
    """Major units (e.g. 19.99) to integer minor units (1999), rounding half up."""
    value = _as_decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
    return int(value * MINOR_PER_MAJOR)


def to_major_units(minor: int) -> Decimal:
    """Integer minor units (1999) to a two-place Decimal (19.99)."""
    if isinstance(minor, bool) or not isinstance(minor, int):
        raise TypeError(f"minor units must be an int, got {type(minor).__name__}")
    return (Decimal(minor) / MINOR_PER_MAJOR).quantize(CENTS)
