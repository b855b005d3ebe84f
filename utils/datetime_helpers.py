"""
Datetime helper utilities.

All stored timestamps are timezone-naive UTC (DateTime(timezone=False)).
Services never call datetime.now() directly; they ask a Clock, so tests
can control "now" for expiry and reminder checks.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert a timezone-aware datetime to naive UTC"""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def get_naive_utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Clock:
    """Single source of "now" for timestamping and expiry comparison"""

    def now(self) -> datetime:
        return get_naive_utc_now()


class FixedClock(Clock):
    """Manually controlled clock for deterministic tests and replays"""

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_naive_datetime(start) or get_naive_utc_now()

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        """Move time forward, e.g. clock.advance(minutes=90)"""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = ensure_naive_datetime(moment)
