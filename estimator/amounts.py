"""Cent rounding, clamping and defensive numeric coercion for money fields."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")
UNLIMITED = Decimal("Infinity")
# Amounts at or beyond a trillion are treated as garbage input.
MAX_MAGNITUDE = 12


def _coerce(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace("$", "").replace(",", "")
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    if not number.is_finite() or number.adjusted() >= MAX_MAGNITUDE:
        return None
    return number


def parse_amount(value: Any) -> Decimal:
    """Parse a free-form numeric field; anything unparseable becomes zero."""

    number = _coerce(value)
    return number if number is not None else ZERO


def parse_optional_amount(value: Any) -> Decimal | None:
    """Like parse_amount, but blank or invalid input stays ``None``."""

    return _coerce(value)


def parse_count(value: Any) -> int:
    number = _coerce(value)
    if number is None:
        return 0
    return int(number)


def cents(value: Decimal) -> Decimal:
    """Round to the cent, half away from zero."""

    if not value.is_finite():
        return value
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp0(value: Decimal) -> Decimal:
    return value if value > 0 else ZERO


def to_cents(value: Any) -> Decimal:
    return cents(parse_amount(value))


def format_money(value: Decimal) -> str:
    return f"${value:,.2f}"
