"""Decimal helpers: liters and money are never accumulated as floats."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

MONEY = Decimal("0.01")


def to_decimal(value) -> Optional[Decimal]:
    """Coerce int/float/str/Decimal to Decimal; floats go through str to keep their printed value."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a number")
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValueError(f"{value!r} is not a number")


def round_half_up(value: Decimal, places: int = 0) -> Decimal:
    exp = Decimal(1).scaleb(-places)
    return value.quantize(exp, rounding=ROUND_HALF_UP)


def money(value: Decimal) -> Decimal:
    return value.quantize(MONEY, rounding=ROUND_HALF_UP)
