"""
Day-key derivation.

Usage is partitioned by calendar day in one fixed reference timezone, so
every user shares the same quota reset boundary wherever they are.
"""

from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class DayKeyDeriver:
    """Computes the YYYY-MM-DD key of the current day in a fixed timezone."""

    def __init__(self, tz_name: str = "Asia/Kolkata", clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            tz_name: IANA name of the reference timezone
            clock: Callable returning the current instant, defaults to utc_now
        """
        self.tz = ZoneInfo(tz_name)
        self.clock = clock or utc_now

    def derive(self, instant: Optional[datetime] = None) -> str:
        """Return the day key for instant, or for now if omitted.

        Naive datetimes are taken to be UTC.
        """
        if instant is None:
            instant = self.clock()
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.tz).strftime("%Y-%m-%d")
