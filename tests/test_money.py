from decimal import Decimal

import pytest

from app.utils.money import (
    convert_approximate,
    from_minor_units,
    round_money,
    to_minor_units,
)
from tests.conftest import RATES


def test_round_money_rounds_half_up():
    assert round_money("2.675") == Decimal("2.68")
    assert round_money("2.665") == Decimal("2.67")
    assert round_money(Decimal("4.9995")) == Decimal("5.00")


def test_round_money_avoids_float_artefacts():
    # 1.005 is 1.00499999... as a binary float
    assert round_money(1.005) == Decimal("1.01")


def test_to_minor_units_uses_currency_exponent():
    assert to_minor_units("12.5", "TND") == 12500
    assert to_minor_units("12.5", "usd") == 1250
    assert to_minor_units("10.005", "USD") == 1001


def test_from_minor_units_keeps_currency_precision():
    assert from_minor_units(12500, "TND") == Decimal("12.500")
    assert from_minor_units(1999, "USD") == Decimal("19.99")


def test_unsupported_currency_is_rejected():
    with pytest.raises(ValueError):
        to_minor_units("1", "XYZ")


def test_convert_approximate_between_configured_currencies():
    assert convert_approximate("100", "TND", "USD", RATES) == Decimal("32.00")
    assert convert_approximate("10", "USD", "TND", RATES) == Decimal("31.250")


def test_convert_approximate_same_currency_is_identity():
    assert convert_approximate("45.5", "TND", "tnd", RATES) == Decimal("45.5")


def test_convert_approximate_requires_a_rate():
    with pytest.raises(ValueError):
        convert_approximate("10", "TND", "EUR", RATES)
