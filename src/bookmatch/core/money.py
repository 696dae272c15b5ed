#!/usr/bin/env python3
"""
Money Primitive Type

Immutable amount wrapper that uses integer minor units internally.
The currency code is carried by the owning record, not by Money itself,
so comparisons across currencies are the caller's responsibility.
"""

from dataclasses import dataclass

from .currency import AmountInput, cents_to_amount_str, parse_amount_to_cents


@dataclass(frozen=True, order=True)
class Money:
    """
    Immutable amount in minor units (cents).

    Supports both positive and negative amounts. Documents use the sign to
    encode the expected payment direction (negative = credit note), while
    transaction amounts are always unsigned.

    Examples:
        >>> invoice = Money.from_amount("29.00")
        >>> credit = Money.from_amount("-20.00")
        >>> str(invoice + credit)
        '9.00'
        >>> credit.abs()
        Money(cents=2000)
    """

    cents: int

    @classmethod
    def from_cents(cls, cents: int) -> "Money":
        """Create Money from cents."""
        return cls(cents=int(cents))

    @classmethod
    def from_amount(cls, amount: AmountInput) -> "Money":
        """
        Parse from a major-unit amount like "12.34", 12.34 or 12.

        Args:
            amount: Decimal string or number in major units

        Returns:
            Money object
        """
        return cls(cents=parse_amount_to_cents(amount))

    @classmethod
    def zero(cls) -> "Money":
        return cls(cents=0)

    def to_cents(self) -> int:
        """Get value in cents."""
        return self.cents

    def to_amount_str(self) -> str:
        """Get major-unit string such as '-12.34'."""
        return cents_to_amount_str(self.cents)

    def abs(self) -> "Money":
        """Return absolute value of Money."""
        return Money(cents=abs(self.cents))

    def is_negative(self) -> bool:
        return self.cents < 0

    def __add__(self, other: "Money") -> "Money":
        return Money(cents=self.cents + other.cents)

    def __sub__(self, other: "Money") -> "Money":
        return Money(cents=self.cents - other.cents)

    def __neg__(self) -> "Money":
        return Money(cents=-self.cents)

    def __str__(self) -> str:
        return cents_to_amount_str(self.cents)


def sum_money(values: "list[Money]") -> Money:
    """Sum a list of Money values (empty list sums to zero)."""
    return Money(cents=sum(value.cents for value in values))
