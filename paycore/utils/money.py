"""
PayCore - Money helpers

All payroll amounts are Decimal and rounded half-up to kobo (0.01).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0.00")
TWO_PLACES = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Round to two decimal places, half-up."""
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def percent_of(rate: Decimal, base: Decimal) -> Decimal:
    """rate% of base, unrounded."""
    return base * (Decimal(rate) / Decimal("100"))


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
