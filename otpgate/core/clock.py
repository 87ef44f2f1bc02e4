"""
UTC time helpers.

Timestamps are stored naive in UTC so SQLite and PostgreSQL compare them the same way.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def resolve_now(now: Optional[datetime] = None) -> datetime:
    return as_naive_utc(now) if now is not None else utcnow()


def day_key(now: datetime) -> str:
    """Calendar day bucket (YYYY-MM-DD) for the per-contact OTP ledger."""
    return now.date().isoformat()


def next_day_start(now: datetime) -> datetime:
    return datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
