"""Peso/centavo conversion at the display boundary"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

CENTS_PER_PESO = 100
TWO_PLACES = Decimal("0.01")


def to_cents(value: Union[Decimal, str, int]) -> int:
    """Convert a peso amount to integer centavos, rounding half up to 2 places"""
    pesos = Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return int(pesos * CENTS_PER_PESO)


def to_pesos(cents: int) -> Decimal:
    """Centavos to a 2-place Decimal"""
    return (Decimal(cents) / CENTS_PER_PESO).quantize(TWO_PLACES)


def format_pesos(cents: int) -> str:
    """Human readable amount, e.g. 6000 -> '₱60.00'"""
    sign = "-" if cents < 0 else ""
    return f"{sign}₱{to_pesos(abs(cents)):,}"
