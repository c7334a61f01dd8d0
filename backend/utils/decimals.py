"""Decimal parsing and display rounding.

Currency values round half-up. Displayed token quantities round up
(ceiling), so a dust balance never shows as zero.
"""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

CURRENCY_ROUNDING = ROUND_HALF_UP
QUANTITY_ROUNDING = ROUND_CEILING
DISPLAY_PLACES = 2

Number = Union[Decimal, int, float, str]


def parse_decimal(value: Optional[Number]) -> Decimal:
    """Parse a decimal string (or number); empty or invalid input is zero."""
    if value is None or value == "":
        return Decimal("0")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not parsed.is_finite():
        return Decimal("0")
    return parsed


def quantize(value: Number, places: int = DISPLAY_PLACES, rounding: str = CURRENCY_ROUNDING) -> Decimal:
    """Round ``value`` to ``places`` decimal places with the given mode."""
    exponent = Decimal(1).scaleb(-places)
    return parse_decimal(value).quantize(exponent, rounding=rounding)


def format_currency(value: Number, places: int = DISPLAY_PLACES) -> str:
    """Format a quote-currency value, rounding half-up."""
    return format(quantize(value, places, CURRENCY_ROUNDING), "f")


def format_quantity(value: Number, places: int = DISPLAY_PLACES) -> str:
    """Format a token quantity for display, rounding up."""
    return format(quantize(value, places, QUANTITY_ROUNDING), "f")
