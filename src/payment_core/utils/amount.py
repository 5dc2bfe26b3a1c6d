"""Amount conversion and formatting helpers.

Amounts are kept in major units (19.99) inside the ledger and converted to
minor units (1999) only at the processor boundary.
"""

from decimal import ROUND_HALF_UP, Decimal

CURRENCY_SYMBOLS: dict[str, str] = {
    "ILS": "₪",
    "USD": "$",
    "EUR": "€",
}


def amount_to_minor_units(amount: float) -> int:
    """Convert a major-unit amount to integer minor units (cents, agorot)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def minor_units_to_amount(minor_units: int) -> float:
    """Convert integer minor units back to a major-unit amount."""
    return float(Decimal(minor_units) / 100)


def decimal_places(amount: float) -> int:
    """Number of significant decimal places in an amount."""
    exponent = Decimal(str(amount)).normalize().as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def format_amount(amount: float, currency: str) -> str:
    """Format an amount for display, e.g. ``₪1,250.00``."""
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    formatted = f"{amount:,.2f}"
    if symbol is None:
        return f"{formatted} {currency.upper()}"
    return f"{symbol}{formatted}"
