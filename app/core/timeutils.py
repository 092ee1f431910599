from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Return aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware_utc(value: datetime) -> datetime:
    """
    Ensure datetime is timezone-aware in UTC.

    - If naive, assume it is UTC and attach tzinfo.
    - If aware, convert to UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day_start(now: Optional[datetime] = None) -> datetime:
    now_utc = ensure_aware_utc(now) if now is not None else utcnow()
    return now_utc.replace(hour=0, minute=0, second=0, microsecond=0)


def utc_day_window(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    day_start = utc_day_start(now)
    return day_start, day_start + timedelta(days=1)


def isoformat_utc(value: Optional[datetime] = None) -> str:
    return ensure_aware_utc(value or utcnow()).isoformat().replace("+00:00", "Z")


def from_timestamp(ts: int | float) -> datetime:
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


def display_zone(name: str | None) -> ZoneInfo | timezone:
    try:
        return ZoneInfo((name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def format_local_time(ts: int | float, tz_name: str | None) -> str:
    """HH:MM of an epoch timestamp in the given IANA zone."""
    return from_timestamp(ts).astimezone(display_zone(tz_name)).strftime("%H:%M")


def format_ru_date(ts: int | float, tz_name: str | None = None) -> str:
    """dd.mm.yyyy of an epoch timestamp in the given IANA zone (UTC when unset)."""
    return from_timestamp(ts).astimezone(display_zone(tz_name)).strftime("%d.%m.%Y")
