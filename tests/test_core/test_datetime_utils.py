"""Tests for datetime_utils."""

from datetime import UTC, datetime, timedelta

from techhub.core.datetime_utils import get_cutoff, get_expiry, is_expired, utc_now


class TestUtcNow:
    def test_is_naive(self):
        """Should return a naive datetime for database columns."""
        assert utc_now().tzinfo is None

    def test_matches_aware_utc(self):
        aware = datetime.now(UTC).replace(tzinfo=None)
        assert abs(utc_now() - aware) < timedelta(seconds=1)


class TestIsExpired:
    def test_past_is_expired(self):
        assert is_expired(utc_now() - timedelta(seconds=1)) is True

    def test_future_is_not_expired(self):
        assert is_expired(utc_now() + timedelta(minutes=1)) is False


class TestCutoffAndExpiry:
    def test_cutoff_hours(self):
        expected = utc_now() - timedelta(hours=48)
        assert abs(get_cutoff(hours=48) - expected) < timedelta(seconds=1)

    def test_cutoff_days(self):
        expected = utc_now() - timedelta(days=7)
        assert abs(get_cutoff(days=7) - expected) < timedelta(seconds=1)

    def test_expiry_accepts_fractional_seconds(self):
        expected = utc_now() + timedelta(seconds=61.5)
        assert abs(get_expiry(seconds=61.5) - expected) < timedelta(seconds=1)
