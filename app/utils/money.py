"""
Money Helpers

Decimal money arithmetic for major-unit amounts (prices, promo discounts) and
conversions to the integer minor units payment gateways work with.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Tuple

Money = Decimal

# Number of decimal places of each currency's minor unit
MINOR_UNIT_EXPONENTS = {
    "TND": 3,  # millimes
    "USD": 2,  # cents
    "EUR": 2,
    "GBP": 2,
}


def D(x) -> Money:
    """Coerce ints, floats and strings into a Decimal without float artefacts."""
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))


def round_money(x, places: int = 2) -> Money:
    """Round half-up to a fixed number of decimal places."""
    return D(x).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def minor_unit_exponent(currency: str) -> int:
    try:
        return MINOR_UNIT_EXPONENTS[currency.upper()]
    except KeyError:
        raise ValueError(f"Unsupported currency: {currency}")


def to_minor_units(amount, currency: str) -> int:
    """
    Convert a major-unit amount into the currency's minor unit.

    Args:
        amount: Amount in major units (e.g. 12.5 TND)
        currency: ISO currency code

    Returns:
        Integer amount in minor units (e.g. 12500 millimes)
    """
    exponent = minor_unit_exponent(currency)
    return int(round_money(D(amount).scaleb(exponent), 0))


def from_minor_units(amount_minor: int, currency: str) -> Money:
    """Convert an integer minor-unit amount back into major units."""
    exponent = minor_unit_exponent(currency)
    return Decimal(int(amount_minor)).scaleb(-exponent).quantize(
        Decimal(1).scaleb(-exponent)
    )


def convert_approximate(
    amount,
    from_currency: str,
    to_currency: str,
    rates: Dict[Tuple[str, str], Decimal],
) -> Money:
    """
    Convert a major-unit amount between currencies using a configured rate.

    The result is approximate and must not be used for refund accounting.
    """
    from_currency = from_currency.upper()
    to_currency = to_currency.upper()
    if from_currency == to_currency:
        return D(amount)

    rate = rates.get((from_currency, to_currency))
    if rate is None:
        raise ValueError(f"No exchange rate configured for {from_currency}->{to_currency}")

    return round_money(D(amount) * D(rate), minor_unit_exponent(to_currency))
