from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


# Display format used for item submission / modification stamps
ITEM_DATE_FORMAT = "%d-%m-%Y %H:%M"


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def minutes_from_now(minutes: int) -> datetime:
    return utcnow() + timedelta(minutes=minutes)


def item_stamp(dt: Optional[datetime] = None) -> str:
    """Item date/mod_date text, e.g. '18-10-2026 19:05'."""
    return (dt or utcnow()).strftime(ITEM_DATE_FORMAT)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string into a UTC-naive datetime.

    Naive input is taken as UTC; a trailing Z or an offset is converted.
    Empty input gives None.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with trailing 'Z'; naive values are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
