"""Quiet-hours evaluation in the recipient's local time.

Windows are whole local hours. ``start > end`` spans midnight (22-7 is
quiet from 22:00 to 06:59). A zero-length window (``start == end``) is
never quiet.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class QuietWindow:
    start_hour: int
    end_hour: int

    def __post_init__(self) -> None:
        for hour in (self.start_hour, self.end_hour):
            if not 0 <= hour <= 23:
                raise ValueError(f"Quiet hour out of range: {hour}")

    @classmethod
    def from_profile(cls, profile) -> "QuietWindow | None":
        """Build a window from a profile; None when quiet hours are unset."""
        if profile.quiet_start_hour is None or profile.quiet_end_hour is None:
            return None
        return cls(profile.quiet_start_hour, profile.quiet_end_hour)


def is_quiet(now_local: datetime, window: QuietWindow | None) -> bool:
    """Return True when ``now_local`` falls inside the quiet window."""
    if window is None or window.start_hour == window.end_hour:
        return False

    hour = now_local.hour
    if window.start_hour > window.end_hour:
        return hour >= window.start_hour or hour < window.end_hour
    return window.start_hour <= hour < window.end_hour


def next_sendable(now_local: datetime, window: QuietWindow | None) -> datetime:
    """Return the first ``end_hour:00`` local instant strictly after now.

    Returns ``now_local`` unchanged when it is not quiet.
    """
    if not is_quiet(now_local, window):
        return now_local

    candidate = now_local.replace(
        hour=window.end_hour, minute=0, second=0, microsecond=0
    )
    if candidate <= now_local:
        candidate = candidate + timedelta(days=1)
    return candidate
