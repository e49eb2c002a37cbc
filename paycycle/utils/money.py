"""
PayCycle - Money helpers

All amounts are Decimal; these helpers keep the rounding rules in one place.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
WHOLE = Decimal("1")


def to_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """Coerce int / float / str / None to Decimal without float artefacts."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def round_whole(amount: Decimal) -> Decimal:
    """Round half-up to a whole currency unit (levies)."""
    return amount.quantize(WHOLE, rounding=ROUND_HALF_UP)


def round_up_whole(amount: Decimal) -> Decimal:
    """Round up to the next whole currency unit (PAYE)."""
    return amount.quantize(WHOLE, rounding=ROUND_CEILING)
