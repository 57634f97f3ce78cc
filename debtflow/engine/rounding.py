"""
Rounding policy.

Money is rounded to 2 decimal places at every aggregation boundary so that
repeated recomputation cannot accumulate drift. Percentages are whole numbers.
Both round half away from zero.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Number) -> Decimal:
    """Convert without picking up binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Number) -> int:
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp_percent(value: int) -> int:
    return max(0, min(100, value))
