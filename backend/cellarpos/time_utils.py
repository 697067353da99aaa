"""
Clock and date helpers.

All timestamps are stored as naive UTC. Receipt and delivery numbers, report
ranges and list filters work on calendar dates.
"""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_date(dt: Optional[datetime] = None) -> date:
    """Calendar day (UTC) that scopes RCP- numbers."""
    return (dt or utcnow()).date()


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    "YYYY-MM-DD" -> date. Blank input gives None.

    A value with a time part ("2026-03-14T09:30:00Z") keeps only its date.
    Raises ValueError for anything else.
    """
    if value is None or not value.strip():
        return None
    day, _, _ = value.strip().partition("T")
    return date.fromisoformat(day)


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def end_of_day(d: date) -> datetime:
    # inclusive upper bound
    return datetime.combine(d, time.max)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize as ISO-8601 with a trailing Z, second precision. Naive means UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None
