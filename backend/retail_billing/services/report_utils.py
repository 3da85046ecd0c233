# Overview: Shared helpers for the report aggregators (windows, buckets, percentages).

from __future__ import annotations

from datetime import datetime, timedelta

from ..errors import ValidationError
from ..time_utils import parse_window, to_utc_z, utcnow

PERIODS = ("day", "week", "month", "year")

TIMEFRAMES = (
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "this_year",
    "last_year",
    "last_30_days",
)


def resolve_window(start: str | None, end: str | None, *, default_days: int = 30) -> tuple[datetime, datetime]:
    try:
        return parse_window(start, end, default_days=default_days)
    except ValueError as exc:
        raise ValidationError(f"Invalid date range: {exc}")


def previous_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """The window of equal length ending just before `start`."""
    length = end - start
    prev_end = start - timedelta(microseconds=1)
    return prev_end - length, prev_end


def period_payload(start: datetime, end: datetime) -> dict:
    return {"start": to_utc_z(start), "end": to_utc_z(end)}


def period_key(dt: datetime, period: str) -> str:
    """
    Bucket label for a timestamp.

    day: YYYY-MM-DD, week: YYYY-MM-DD of the Sunday starting the week,
    month: YYYY-MM, year: YYYY.
    """
    if period == "day":
        return dt.strftime("%Y-%m-%d")
    if period == "week":
        # Python weekday(): Monday=0 .. Sunday=6
        start_of_week = dt - timedelta(days=(dt.weekday() + 1) % 7)
        return start_of_week.strftime("%Y-%m-%d")
    if period == "month":
        return dt.strftime("%Y-%m")
    if period == "year":
        return dt.strftime("%Y")
    raise ValidationError(f"period must be one of {', '.join(PERIODS)}")


def month_keys(start: datetime, end: datetime) -> list[str]:
    """Every YYYY-MM from start's month through end's month."""
    keys = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


def percent_of(part: int | float, whole: int | float) -> float:
    """part / whole * 100, rounded to 2 places; 0 when whole is 0."""
    if not whole:
        return 0.0
    return round(part * 100 / whole, 2)


def growth_percent(current: int | float, previous: int | float) -> float:
    """Change against the previous value; 0 when there is no previous value."""
    if not previous:
        return 0.0
    return round((current - previous) * 100 / previous, 2)


def average(total: int | float, count: int) -> float:
    if not count:
        return 0.0
    return round(total / count, 2)


def with_percentages(rows: list[dict], *, value_key: str = "total", total: int | None = None) -> list[dict]:
    """Attach `percentage` of value_key to each row; all zeros when the total is 0."""
    if total is None:
        total = sum(r[value_key] for r in rows)
    for row in rows:
        row["percentage"] = percent_of(row[value_key], total)
    return rows


def hourly_buckets(rows, *, amount=lambda r: r.total_cents, at=lambda r: r.created_at) -> list[dict]:
    """24 buckets (hour 0-23, UTC) of summed amount and order count."""
    buckets = [{"hour": hour, "sales": 0, "orders": 0} for hour in range(24)]
    for row in rows:
        bucket = buckets[at(row).hour]
        bucket["sales"] += amount(row)
        bucket["orders"] += 1
    return buckets


def timeframe_range(timeframe: str, now: datetime | None = None) -> tuple[datetime, datetime, datetime, datetime]:
    """
    (start, end, previous_start, previous_end) for a dashboard timeframe.

    Weeks start on Sunday. Closed periods (yesterday, last_*) end at the last
    microsecond of their final day; open periods end now. The previous window
    has the same length and ends just before start.
    """
    if timeframe not in TIMEFRAMES:
        raise ValidationError(f"timeframe must be one of {', '.join(TIMEFRAMES)}")

    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end_of_day = timedelta(days=1) - timedelta(microseconds=1)
    end = now

    if timeframe == "today":
        start = today
    elif timeframe == "yesterday":
        start = today - timedelta(days=1)
        end = start + end_of_day
    elif timeframe == "this_week":
        start = today - timedelta(days=(today.weekday() + 1) % 7)
    elif timeframe == "last_week":
        start = today - timedelta(days=(today.weekday() + 1) % 7 + 7)
        end = start + timedelta(days=6) + end_of_day
    elif timeframe == "this_month":
        start = today.replace(day=1)
    elif timeframe == "last_month":
        first_of_this_month = today.replace(day=1)
        start = (first_of_this_month - timedelta(days=1)).replace(day=1)
        end = first_of_this_month - timedelta(microseconds=1)
    elif timeframe == "this_year":
        start = today.replace(month=1, day=1)
    elif timeframe == "last_year":
        start = today.replace(year=today.year - 1, month=1, day=1)
        end = today.replace(month=1, day=1) - timedelta(microseconds=1)
    else:  # last_30_days
        start = today - timedelta(days=30)

    prev_start, prev_end = previous_window(start, end)
    return start, end, prev_start, prev_end
