"""Time utilities for timezone-aware UTC datetimes."""

from datetime import UTC, date, datetime


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime for defaults and onupdate hooks."""
    return datetime.now(UTC)


def utc_today() -> date:
    return utc_now().date()


def format_us_date(value: date | datetime) -> str:
    """Format as M/D/YYYY without zero padding, the way US customers read dates."""
    return f"{value.month}/{value.day}/{value.year}"
