"""
Money helpers for pricing and payment calculations.

Amounts are handled as ``decimal.Decimal`` in rupees and rounded half-up, so
tax and discount arithmetic never accumulates binary floating point error.
Minor units (paisa) are plain integers.

Functions:
    to_decimal: Coerce ints, floats, strings and Decimals to Decimal
    round_currency: Round half-up to a number of decimal places
    to_minor_units / from_minor_units: Rupees <-> paisa conversion
    format_amount_text: Plain string for payment notes (no trailing ``.0``)
    format_inr: Display string with Indian digit grouping, e.g. ``₹1,23,456.00``
    format_rupees: Compact grouped label for messages, e.g. ``₹10,00,000``
"""

import decimal
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

NumericType = Union[int, float, str, Decimal]

CURRENCY_SYMBOLS = {
    'INR': '₹',
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
}


def to_decimal(value: NumericType) -> Decimal:
    """
    Convert a numeric value to Decimal without float artefacts.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary value: {value!r}")
    try:
        return Decimal(str(value))
    except decimal.InvalidOperation as exc:
        raise ValueError(f"Not a monetary value: {value!r}") from exc


def round_currency(amount: NumericType, places: int = 0) -> Decimal:
    """
    Round a monetary amount half-up.

    Args:
        amount: Value to round
        places: Decimal places to keep (0 rounds to whole rupees)

    Returns:
        Rounded Decimal

    Example:
        >>> round_currency(Decimal('8100.5'))
        Decimal('8101')
    """
    quantum = Decimal(1).scaleb(-places)
    return to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)


def to_minor_units(amount: NumericType) -> int:
    """Rupees to paisa, rounded half-up."""
    return int(round_currency(to_decimal(amount) * 100))


def from_minor_units(minor: int) -> Decimal:
    """Paisa to rupees."""
    return to_decimal(minor) / 100


def format_amount_text(amount: NumericType) -> str:
    """
    Render an amount for string-only payloads.

    Integral amounts have no decimal part (``53100``); others keep their
    significant decimals (``53100.5``).
    """
    value = to_decimal(amount)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), 'f')


def group_indian_digits(integer_part: str) -> str:
    """Group digits the Indian way: last three, then pairs (``12,34,567``)."""
    if len(integer_part) <= 3:
        return integer_part
    head, tail = integer_part[:-3], integer_part[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ','.join(groups + [tail])


def format_inr(amount: NumericType, currency: str = 'INR', decimals: int = 2) -> str:
    """
    Format an amount for display with currency symbol and Indian grouping.

    Example:
        >>> format_inr(123456.5)
        '₹1,23,456.50'
    """
    value = round_currency(amount, decimals)
    sign = '-' if value < 0 else ''
    text = format(abs(value), 'f')
    integer_part, _, fraction = text.partition('.')
    symbol = CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")
    grouped = group_indian_digits(integer_part)
    return f"{sign}{symbol}{grouped}.{fraction}" if decimals else f"{sign}{symbol}{grouped}"


def format_rupees(amount: NumericType) -> str:
    """
    Short rupee label for messages: grouped, without forced decimals.

    Example:
        >>> format_rupees(1000000)
        '₹10,00,000'
    """
    integer_part, dot, fraction = format_amount_text(amount).partition('.')
    sign = ''
    if integer_part.startswith('-'):
        sign, integer_part = '-', integer_part[1:]
    return f"{sign}₹{group_indian_digits(integer_part)}{dot}{fraction}"
