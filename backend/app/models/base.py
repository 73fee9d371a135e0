"""
Shared model helpers
"""
from datetime import datetime, timezone

from sqlmodel import SQLModel


def utc_now() -> datetime:
    """
    Current time in UTC

    Returns:
        timezone-aware datetime
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes

    SQLite drops tzinfo on read, PostgreSQL keeps it; comparisons need
    both sides aware.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


__all__ = ["SQLModel", "utc_now", "ensure_utc"]
