"""Clock implementations."""

from datetime import datetime, timedelta, timezone

from .interfaces import Clock
from .utils import ensure_utc


class SystemClock(Clock):
    """Reads the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """A clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: datetime):
        self._now = ensure_utc(start)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = ensure_utc(instant)

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments (minutes=5, days=1)."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
