#!/usr/bin/env python3
"""Tests for FinancialDate primitive type."""

from datetime import date, datetime

import pytest

from bookmatch.core.dates import FinancialDate


class TestFinancialDateConstruction:
    """Test FinancialDate construction."""

    def test_from_string(self):
        assert FinancialDate.from_string("2024-01-15").date == date(2024, 1, 15)

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-03-01", date(2024, 3, 1)),
            ("2024-03-01T10:15:00Z", date(2024, 3, 1)),
            (date(2024, 3, 1), date(2024, 3, 1)),
            (datetime(2024, 3, 1, 23, 59), date(2024, 3, 1)),
        ],
        ids=["date_str", "timestamp_str", "date", "datetime"],
    )
    def test_from_iso_accepts_dates_and_timestamps(self, value, expected):
        assert FinancialDate.from_iso(value).date == expected

    @pytest.mark.parametrize("value", [None, "", "03/01/2024", "2024-13-01"])
    def test_from_iso_returns_none_for_unparseable(self, value):
        assert FinancialDate.from_iso(value) is None


class TestFinancialDateCalculations:
    """Test FinancialDate calculations."""

    def test_add_days_crosses_month(self):
        assert FinancialDate.from_string("2024-02-28").add_days(2).to_iso_string() == "2024-03-01"

    def test_month_key(self):
        assert FinancialDate.from_string("2024-03-09").month_key() == "2024-03"

    def test_days_until_is_signed(self):
        old = FinancialDate(date=date(2024, 1, 1))
        new = FinancialDate(date=date(2024, 1, 11))
        assert old.days_until(new) == 10
        assert new.days_until(old) == -10

    def test_ordering(self):
        early = FinancialDate.from_string("2024-01-01")
        late = FinancialDate.from_string("2024-01-02")
        assert early < late
        assert sorted([late, early]) == [early, late]
        assert early == FinancialDate.from_string("2024-01-01")
