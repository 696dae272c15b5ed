#!/usr/bin/env python3
"""
Currency Amount Parsing and Formatting

All amounts in the matching engine are integer minor units (cents).
Bank exports and extraction results arrive as decimal strings or numbers
in major units; these helpers convert them without floating-point drift.

Key Principles:
- Never compare currency amounts as floats
- Parse through Decimal, store as int cents
- Formatting is currency-agnostic ("12.34"); the ISO code travels separately
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

AmountInput = Union[str, int, float, Decimal]


def parse_amount_to_cents(value: AmountInput) -> int:
    """
    Parse a major-unit amount into integer cents.

    Accepts plain decimal strings ("12.34", "-5", "1,234.56"), European
    decimal comma strings ("12,34", "1.234,56") and numbers.

    Args:
        value: Amount in major units

    Returns:
        Amount in cents, rounded half-up

    Raises:
        ValueError: If the value cannot be parsed as an amount

    Examples:
        parse_amount_to_cents("12.34") -> 1234
        parse_amount_to_cents("12,34") -> 1234
        parse_amount_to_cents(-20) -> -2000
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")

    if isinstance(value, Decimal):
        decimal_amount = value
    elif isinstance(value, int):
        return value * 100
    elif isinstance(value, float):
        decimal_amount = Decimal(repr(value))
    else:
        decimal_amount = _parse_decimal_string(str(value))

    if not decimal_amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    return int((decimal_amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _parse_decimal_string(raw: str) -> Decimal:
    clean = raw.replace("€", "").replace("$", "").replace(" ", "").strip()
    if not clean:
        raise ValueError("Empty amount")

    # "1.234,56" and "12,34" use a decimal comma
    if "," in clean and ("." not in clean or clean.rfind(",") > clean.rfind(".")):
        clean = clean.replace(".", "").replace(",", ".")
    else:
        clean = clean.replace(",", "")

    try:
        return Decimal(clean)
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {raw!r}") from e


def cents_to_amount_str(cents: int) -> str:
    """
    Convert cents to a major-unit string using integer arithmetic.

    Example:
        cents_to_amount_str(-4599) -> "-45.99"
    """
    is_negative = cents < 0
    abs_cents = abs(int(cents))

    units = abs_cents // 100
    remainder = abs_cents % 100

    if is_negative:
        return f"-{units}.{remainder:02d}"
    return f"{units}.{remainder:02d}"


def format_cents(cents: int, currency: str | None = None) -> str:
    """Format cents for display, optionally suffixed with the ISO currency code."""
    if currency:
        return f"{cents_to_amount_str(cents)} {currency}"
    return cents_to_amount_str(cents)


def canonical_currency(code: str | None) -> str | None:
    """Uppercase and trim an ISO currency code; empty codes become None."""
    if code is None:
        return None
    clean = str(code).strip().upper()
    return clean or None
