"""Time zone helpers for UTC storage and schedule-local arithmetic."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_zone(timezone_name: str | None) -> ZoneInfo:
    """Return a ZoneInfo for the name, falling back to the configured default."""
    name = timezone_name or settings.sync.default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid timezone: {name}") from exc


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are assumed to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_zone(value: datetime, timezone_name: str | None) -> datetime:
    """Convert a datetime into the named timezone."""
    return ensure_utc(value).astimezone(get_zone(timezone_name))
