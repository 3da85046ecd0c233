from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" is midnight UTC of that day
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_window(
    start: Optional[str],
    end: Optional[str],
    *,
    default_days: int,
) -> tuple[datetime, datetime]:
    """
    Resolve a reporting window from optional ISO strings.

    A bare end date ("2025-01-31") covers the whole day. Missing bounds
    default to [now - default_days, now].
    """
    now = utcnow()
    end_dt = parse_iso_datetime(end)
    if end_dt is None:
        end_dt = now
    elif end and "T" not in end.strip():
        end_dt = end_dt + timedelta(days=1) - timedelta(microseconds=1)

    start_dt = parse_iso_datetime(start)
    if start_dt is None:
        start_dt = end_dt - timedelta(days=default_days)

    if start_dt > end_dt:
        raise ValueError("start must be before end")
    return start_dt, end_dt


def date_stamp(dt: Optional[datetime] = None) -> str:
    """YYYYMMDD for document numbers."""
    return (dt or utcnow()).strftime("%Y%m%d")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
