"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes for database compatibility
(SQLAlchemy models use naive UTC).

Usage:
    from techhub.core.datetime_utils import utc_now, is_expired, get_cutoff

    # Check expiry
    if is_expired(session.expires_at):
        raise NotAuthenticated()

    # Get cutoff for retention queries
    cutoff = get_cutoff(hours=48)
"""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def is_expired(expires_at: datetime) -> bool:
    """Check if a timestamp has expired.

    Args:
        expires_at: Expiry timestamp (naive UTC)

    Returns:
        True if current time is past expires_at
    """
    return utc_now() > expires_at


def get_cutoff(hours: int = 0, days: int = 0) -> datetime:
    """Get cutoff datetime for filtering queries.

    Args:
        hours: Hours to subtract from now
        days: Days to subtract from now

    Returns:
        Naive UTC datetime representing the cutoff point
    """
    delta = timedelta(hours=hours, days=days)
    return utc_now() - delta


def get_expiry(seconds: float = 0, minutes: int = 0, hours: int = 0, days: int = 0) -> datetime:
    """Get future datetime, e.g. session expiry or a task's next execution time.

    Args:
        seconds: Seconds to add to now
        minutes: Minutes to add to now
        hours: Hours to add to now
        days: Days to add to now

    Returns:
        Naive UTC datetime representing the expiry point
    """
    delta = timedelta(seconds=seconds, minutes=minutes, hours=hours, days=days)
    return utc_now() + delta
