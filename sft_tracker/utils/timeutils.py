"""
Timestamp helpers shared by the schemas and the logic layer.
Stored timestamps are ISO-8601 UTC strings with millisecond precision and a trailing "Z".
"""

from collections.abc import Callable
from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current instant, truncated to the millisecond precision the store keeps."""
    return truncate_to_millis(datetime.now(timezone.utc))


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def ensure_utc(value: datetime) -> datetime:
    # Naive values are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp; returns None for missing or malformed values."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def resolve_timezone(name: str | None) -> tzinfo | None:
    """IANA zone for reporting, or None for the system local zone."""
    return ZoneInfo(name) if name else None


def local_day(value: datetime, tz: tzinfo | None = None) -> date:
    return ensure_utc(value).astimezone(tz).date()
