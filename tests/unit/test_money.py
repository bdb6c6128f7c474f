"""Unit tests for centavo conversion"""

from decimal import Decimal
from canteen_ledger.utils.money import format_pesos, to_cents, to_pesos


def test_to_cents_rounds_half_up():
    assert to_cents("60") == 6000
    assert to_cents(Decimal("12.345")) == 1235
    assert to_cents("0.1") == 10


def test_to_pesos_and_format():
    assert to_pesos(6000) == Decimal("60.00")
    assert format_pesos(123456) == "₱1,234.56"
    assert format_pesos(-6000) == "-₱60.00"
