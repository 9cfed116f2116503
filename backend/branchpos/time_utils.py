from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO 8601 text to a UTC-naive datetime. Blank gives None.

    Offsets (including a trailing Z) are converted to UTC; text without an
    offset is already UTC.
    """
    text = (value or "").strip()
    if not text:
        return None
    parsed = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO 8601 with a Z suffix. Naive values are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def get_zone(tz_name: str | None) -> ZoneInfo:
    """Resolve a tenant timezone name, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_date(dt: datetime, tz_name: str | None) -> date:
    """Calendar date of a UTC-naive timestamp as seen in the tenant's timezone."""
    return dt.replace(tzinfo=timezone.utc).astimezone(get_zone(tz_name)).date()


def trailing_local_days(days: int, tz_name: str | None, now: datetime | None = None) -> list[date]:
    """
    The last `days` calendar dates (oldest first) ending today in tz_name.

    `now` is UTC-naive; defaults to utcnow().
    """
    if days <= 0:
        return []
    today = local_date(now or utcnow(), tz_name)
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def local_day_start_utc(day: date, tz_name: str | None) -> datetime:
    """UTC-naive instant at which `day` begins in tz_name."""
    local_midnight = datetime(day.year, day.month, day.day, tzinfo=get_zone(tz_name))
    return local_midnight.astimezone(timezone.utc).replace(tzinfo=None)
