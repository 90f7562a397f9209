"""Tests for time utilities."""

from datetime import date, datetime, timedelta, timezone

import pytest
from zoneinfo import ZoneInfoNotFoundError

from changedesk.infra.time import legacy_signature_timestamp, operator_today, utc_now


class TestUtcNow:
    """Tests for utc_now()."""

    def test_returns_utc_datetime(self):
        assert utc_now().tzinfo == timezone.utc

    def test_returns_current_time(self):
        before = datetime.now(timezone.utc)
        now = utc_now()
        after = datetime.now(timezone.utc)

        assert before <= now <= after


class TestOperatorToday:
    def test_same_day_in_utc_zone(self):
        now = datetime(2026, 2, 1, 23, 30, tzinfo=timezone.utc)
        assert operator_today("Atlantic/Reykjavik", now) == date(2026, 2, 1)

    def test_ahead_of_utc(self):
        now = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)
        assert operator_today("Pacific/Auckland", now) == date(2026, 2, 2)

    def test_behind_utc(self):
        now = datetime(2026, 2, 1, 2, 0, tzinfo=timezone.utc)
        assert operator_today("America/New_York", now) == date(2026, 1, 31)

    def test_non_utc_reference(self):
        now = datetime(2026, 2, 1, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        assert operator_today("UTC", now) == date(2026, 1, 31)

    def test_unknown_zone(self):
        with pytest.raises(ZoneInfoNotFoundError):
            operator_today("Mars/Olympus_Mons")


class TestLegacySignatureTimestamp:
    def test_format(self):
        now = datetime(2026, 2, 10, 14, 3, 59, 999, tzinfo=timezone.utc)
        assert legacy_signature_timestamp(now) == "2026-02-10 14:03:59"

    def test_converted_to_utc(self):
        now = datetime(2026, 2, 10, 16, 3, 59, tzinfo=timezone(timedelta(hours=2)))
        assert legacy_signature_timestamp(now) == "2026-02-10 14:03:59"
