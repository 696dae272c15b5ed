#!/usr/bin/env python3
"""
FinancialDate Primitive Type

Immutable date wrapper for booking, value, invoice and due dates.
Bank and extraction payloads mix plain dates with full ISO timestamps,
so parsing accepts both and keeps only the calendar date.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta


@dataclass(frozen=True, order=True)
class FinancialDate:
    """Calendar date of a booking or document; ordered and hashable."""

    date: date

    @classmethod
    def from_string(cls, date_str: str, format: str = "%Y-%m-%d") -> "FinancialDate":
        """
        Parse from string in specified format.

        Raises:
            ValueError: If the string does not match the format
        """
        return cls(date=datetime.strptime(date_str, format).date())

    @classmethod
    def from_iso(cls, value: "str | date | FinancialDate | None") -> "FinancialDate | None":
        """
        Leniently parse an ISO date or timestamp.

        "2024-03-01", "2024-03-01T10:15:00Z" and date objects are accepted.
        Empty or unparseable values return None instead of raising.
        """
        if value is None:
            return None
        if isinstance(value, FinancialDate):
            return value
        if isinstance(value, datetime):
            return cls(date=value.date())
        if isinstance(value, date):
            return cls(date=value)

        text = str(value).strip()
        if len(text) < 10:
            return None
        try:
            return cls(date=date.fromisoformat(text[:10]))
        except ValueError:
            return None

    @classmethod
    def today(cls) -> "FinancialDate":
        return cls(date=date.today())

    def to_iso_string(self) -> str:
        """Format as YYYY-MM-DD."""
        return self.date.isoformat()

    def add_days(self, days: int) -> "FinancialDate":
        return FinancialDate(date=self.date + timedelta(days=days))

    def month_key(self) -> str:
        """Format as YYYY-MM."""
        return f"{self.date.year:04d}-{self.date.month:02d}"

    def days_until(self, other: "FinancialDate") -> int:
        """Signed number of days from this date to other."""
        return (other.date - self.date).days

    def __str__(self) -> str:
        return self.to_iso_string()
