"""
Tests for tenantlib/activity.py sign-in helpers.
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tenantlib.activity import (
    account_status,
    classify_activity,
    days_since,
    format_datetime,
    last_access,
    parse_datetime,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestParseDatetime:
    """Tests for parse_datetime function."""

    def test_zulu_string(self):
        assert parse_datetime("2024-10-01T12:34:56Z") == datetime(2024, 10, 1, 12, 34, 56, tzinfo=timezone.utc)

    def test_seven_fractional_digits(self):
        """Graph emits 100ns precision."""
        parsed = parse_datetime("2024-10-01T12:34:56.1234567Z")
        assert parsed.microsecond == 123456
        assert parsed.tzinfo is not None

    def test_short_fraction(self):
        assert parse_datetime("2024-10-01T12:34:56.5Z").microsecond == 500000

    def test_offset(self):
        parsed = parse_datetime("2024-10-01T12:00:00+02:00")
        assert parsed.astimezone(timezone.utc).hour == 10

    def test_naive_datetime_assumed_utc(self):
        assert parse_datetime(datetime(2024, 1, 1)).tzinfo == timezone.utc

    def test_aware_datetime_passthrough(self):
        value = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert parse_datetime(value) is value

    @pytest.mark.parametrize("value", [None, "", "   ", "yesterday", 12345])
    def test_unparseable(self, value):
        assert parse_datetime(value) is None


class TestLastAccess:
    """Tests for last_access and days_since."""

    def test_latest_wins(self):
        a = NOW - timedelta(days=5)
        b = NOW - timedelta(days=1)
        assert last_access(a, b) == b
        assert last_access(b, a) == b

    def test_one_missing(self):
        assert last_access(None, NOW) == NOW
        assert last_access(NOW, None) == NOW

    def test_both_missing(self):
        assert last_access(None, None) is None

    def test_days_since(self):
        assert days_since(NOW - timedelta(days=10, hours=5), NOW) == 10

    def test_days_since_none(self):
        assert days_since(None, NOW) is None

    def test_future_clamped(self):
        assert days_since(NOW + timedelta(days=2), NOW) == 0


class TestClassifyActivity:
    """Tests for classify_activity function."""

    def test_active(self):
        assert classify_activity(10, 60) == (False, "Active")

    def test_threshold_is_inclusive_active(self):
        assert classify_activity(60, 60) == (False, "Active")

    def test_inactive(self):
        assert classify_activity(61, 60) == (True, "Inactive (61 days)")

    def test_never(self):
        assert classify_activity(None, 60) == (True, "No sign-in recorded")


class TestFormatting:
    """Tests for account_status and format_datetime."""

    def test_account_status(self):
        assert account_status(True) == "Enabled"
        assert account_status(False) == "Disabled"
        assert account_status(None) == "Enabled"

    def test_format_datetime(self):
        assert format_datetime(datetime(2025, 2, 3, 4, 5, tzinfo=timezone.utc)) == "2025-02-03 04:05"

    def test_format_none(self):
        assert format_datetime(None) == "Unknown"
        assert format_datetime(None, "Never") == "Never"
