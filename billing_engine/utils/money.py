"""Decimal helpers for currency amounts"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
WHOLE = Decimal("1")
ZERO = Decimal("0.00")

# Floating rounding slack allowed when comparing a payment against a balance
BALANCE_TOLERANCE = Decimal("0.01")


def to_money(value: Number) -> Decimal:
    """Convert to Decimal quantized to cents (floats go through str to avoid binary noise)"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_whole(value: Number) -> Decimal:
    """Round half-up to the nearest whole currency unit, returned at cent precision"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(WHOLE, rounding=ROUND_HALF_UP).quantize(CENT)


def money_sum(values: Iterable[Number]) -> Decimal:
    return to_money(sum((to_money(v) for v in values), ZERO))
