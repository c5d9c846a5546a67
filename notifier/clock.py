"""Single source of wall-clock time.

All timestamps are stored as naive UTC datetimes. Components accept an
explicit ``now`` so tests can pin the clock.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_zone(name: str | None, default: str = "UTC") -> ZoneInfo:
    """Return the ZoneInfo for ``name``, falling back to ``default``."""
    try:
        return ZoneInfo(name or default)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(default)


def to_local(utc_naive: datetime, zone: ZoneInfo) -> datetime:
    """Convert a naive UTC datetime to an aware local datetime."""
    return utc_naive.replace(tzinfo=timezone.utc).astimezone(zone)


def to_utc_naive(local: datetime) -> datetime:
    """Convert an aware datetime back to naive UTC."""
    return local.astimezone(timezone.utc).replace(tzinfo=None)
