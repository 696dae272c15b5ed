#!/usr/bin/env python3
"""
Amount and Date Tolerance Rules

Every amount comparison in the pipeline goes through amount_compatible;
every date comparison through calc_window / in_date_window.
"""

from dataclasses import dataclass
from datetime import date

from .config import MatchingConfig
from .dates import FinancialDate
from .models import Direction, Doc
from .money import Money

# Window used for documents without any date
DEFAULT_WINDOW_START = FinancialDate(date=date(1970, 1, 1))
DEFAULT_WINDOW_END = FinancialDate(date=date(2999, 12, 31))


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar date range."""

    start: FinancialDate
    end: FinancialDate

    def contains(self, value: FinancialDate | None) -> bool:
        if value is None:
            return False
        return self.start <= value <= self.end


def amount_compatible(a: Money | None, b: Money | None, cfg: MatchingConfig) -> bool:
    """
    True iff |a - b| <= max(absolute tolerance, relative tolerance * max(|a|, |b|)).

    Compares in integer basis-point space, so the check is exact and
    symmetric in its arguments. Missing amounts are never compatible.
    """
    if a is None or b is None:
        return False
    diff = abs(a.cents - b.cents)
    return diff * 10_000 <= _allowed_scaled(a, b, cfg)


def covers_amount(matched: Money, target: Money, cfg: MatchingConfig) -> bool:
    """True when matched reaches target, allowing the same tolerance as amount_compatible."""
    if amount_compatible(matched, target, cfg):
        return True
    return (matched.cents - target.cents) * 10_000 + _allowed_scaled(matched, target, cfg) >= 0


def _allowed_scaled(a: Money, b: Money, cfg: MatchingConfig) -> int:
    larger = max(abs(a.cents), abs(b.cents))
    return max(cfg.amount_tolerance_cents * 10_000, larger * cfg.amount_tolerance_bps)


def direction_compatible(doc: Doc, direction: Direction) -> bool:
    """Documents with amount >= 0 are paid out (tx 'out'), negative ones paid in."""
    return doc.expected_direction == direction


def calc_window(doc: Doc, cfg: MatchingConfig) -> DateWindow:
    """
    Booking date window in which a payment for the document is expected.

    Due date anchored: [due - date_window_days, due + due_date_extend_days + grace_days],
    with the start moved back to invoice - date_window_days when the invoice
    date is earlier. Invoice date anchored: invoice +/- date_window_days.
    Documents without dates get an effectively unbounded window.
    """
    if doc.due_date is not None:
        start = doc.due_date.add_days(-cfg.date_window_days)
        if doc.invoice_date is not None:
            start = min(start, doc.invoice_date.add_days(-cfg.date_window_days))
        end = doc.due_date.add_days(cfg.due_date_extend_days + cfg.grace_days)
        return DateWindow(start=start, end=end)

    if doc.invoice_date is not None:
        return DateWindow(
            start=doc.invoice_date.add_days(-cfg.date_window_days),
            end=doc.invoice_date.add_days(cfg.date_window_days),
        )

    return DateWindow(start=DEFAULT_WINDOW_START, end=DEFAULT_WINDOW_END)


def has_anchor_date(doc: Doc) -> bool:
    return doc.due_date is not None or doc.invoice_date is not None


def in_date_window(value: FinancialDate | None, window: DateWindow) -> bool:
    return window.contains(value)


def is_overdue(doc: Doc, now: FinancialDate, cfg: MatchingConfig) -> bool:
    """True when now lies strictly after due date + grace days."""
    if doc.due_date is None:
        return False
    return now > doc.due_date.add_days(cfg.grace_days)


def days_between(a: FinancialDate, b: FinancialDate) -> int:
    """Absolute number of calendar days between two dates."""
    return abs(a.days_until(b))
