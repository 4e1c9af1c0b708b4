"""Time utility functions for the progress engine."""

from datetime import date, datetime, timedelta, timezone, tzinfo

ONE_DAY = timedelta(days=1)


def ensure_utc(instant: datetime) -> datetime:
    """Return instant as an aware UTC datetime. Naive values are taken to be UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def to_iso(instant: datetime) -> str:
    return ensure_utc(instant).isoformat()


def parse_instant(value: str | datetime) -> datetime:
    """Parse a stored ISO timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def local_date(instant: datetime, tz: tzinfo = timezone.utc) -> date:
    """Calendar date of an instant in the given fixed timezone."""
    return ensure_utc(instant).astimezone(tz).date()


def whole_days(elapsed: timedelta) -> int:
    """Number of complete days in elapsed. Negative durations count as zero."""
    if elapsed <= timedelta(0):
        return 0
    return elapsed // ONE_DAY
