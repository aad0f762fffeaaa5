from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from config import get_settings
from errors import InvalidAmount

MINOR_PER_MAJOR = 100
MAX_MINOR_UNITS = 2**63 - 1

Number = Union[int, float, str, Decimal]


def _as_decimal(value: object) -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidAmount()
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        # str() keeps floats like 150.1 from carrying binary noise into the result
        text = str(value).strip()
        try:
            amount = Decimal(text)
        except InvalidOperation as exc:
            raise InvalidAmount() from exc
    else:
        raise InvalidAmount()
    if not amount.is_finite():
        raise InvalidAmount()
    return amount


def to_minor_units(major: Number) -> int:
    """Convert a major-unit amount to integer minor units, rounding half away from zero."""
    amount = _as_decimal(major)
    if amount <= 0:
        raise InvalidAmount("Amount must be greater than 0")
    scaled = amount * MINOR_PER_MAJOR
    if scaled > MAX_MINOR_UNITS:
        raise InvalidAmount("Amount is too large")
    minor = int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if minor <= 0:
        raise InvalidAmount("Amount must be greater than 0")
    if minor > MAX_MINOR_UNITS:
        raise InvalidAmount("Amount is too large")
    return minor


def to_major_units(minor: int) -> Decimal:
    return Decimal(minor) / MINOR_PER_MAJOR


def format_money(minor: int, symbol: Optional[str] = None) -> str:
    if symbol is None:
        symbol = get_settings().currency_symbol
    return f"{symbol}{to_major_units(minor):,.2f}"
