"""
Timezone-aware datetime utilities.

Audit timestamps are shown in the device's local time zone, with the
offset spelled out so they stay unambiguous once the file leaves the
device.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Use this instead of datetime.utcnow() which returns naive datetime.
    """
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current time as an aware datetime in the local time zone."""
    return utc_now().astimezone()


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_local_timestamp(value: Optional[datetime] = None) -> str:
    """
    Format a timestamp for the audit trail, e.g. ``2024-05-01 14:03:22 +0200``.

    Args:
        value: Timestamp to format (defaults to now); naive values are UTC

    Returns:
        Local date, time and UTC offset
    """
    value = ensure_aware(value or utc_now()).astimezone()
    return value.strftime("%Y-%m-%d %H:%M:%S %z")


def format_local_date(value: Optional[datetime] = None) -> str:
    """Local calendar date for date stamps, e.g. ``2024-05-01``."""
    value = ensure_aware(value or utc_now()).astimezone()
    return value.strftime("%Y-%m-%d")
