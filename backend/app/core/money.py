"""Decimal money helpers."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from .constants import MONEY_QUANTUM


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Any) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def percent_of(amount: Any, rate_percent: Any) -> Decimal:
    """``rate_percent`` of ``amount`` rounded to cents (rate 5 means 5%)."""
    return quantize_money(to_decimal(amount) * to_decimal(rate_percent) / Decimal(100))


def money_or_none(value: Optional[Any]) -> Optional[Decimal]:
    return None if value is None else quantize_money(value)
