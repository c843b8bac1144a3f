"""
UTC helpers shared by numbering, rate resolution and dashboard aggregation.

SQLite hands back naive datetimes for timezone-aware columns, so every value
read from the database goes through `as_utc` before any arithmetic.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone

DAY = timedelta(days=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day(value: datetime | None = None) -> date:
    """Calendar day (UTC) of `value`, default today."""
    return as_utc(value or utcnow()).date()


def whole_days_between(later: datetime, earlier: datetime) -> int:
    """floor((later - earlier) / 1 day); negative when `later` is before `earlier`."""
    delta = as_utc(later) - as_utc(earlier)
    return math.floor(delta / DAY)
