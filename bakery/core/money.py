"""Fixed-point money helpers. All amounts are Decimal with two places."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert DB/JSON values (Decimal, int, float, str) to Decimal without float noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return to_decimal(value)


def quantize_money(value: Any) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
