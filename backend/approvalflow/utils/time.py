"""Time Utilities - UTC timestamps, clocks and storage conversion"""
from datetime import datetime, timezone, timedelta
from typing import Optional
from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (as returned by MongoDB) and normalize aware ones"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_storage(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert a datetime to the naive UTC form MongoDB stores.

    Every write and every query bound goes through here so comparisons
    never mix aware and naive values.
    """
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def format_iso(dt: datetime) -> str:
    """Format datetime to ISO 8601 string with Z suffix for UTC"""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to datetime

    Args:
        iso_string: ISO formatted datetime string

    Returns:
        Datetime object in UTC
    """
    return ensure_utc(date_parser.isoparse(iso_string))


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from start to end"""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600


# ============================================================================
# Clocks
# ============================================================================

class Clock:
    """Source of the current time for the engine and the scheduler"""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall clock in UTC"""

    def now(self) -> datetime:
        return utc_now()


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Used by tests and by replay tooling to drive time-based sweeps
    deterministically.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_utc(start) if start else utc_now()

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = ensure_utc(value)

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword args (hours=49, minutes=5)"""
        self._now = self._now + timedelta(**kwargs)
        return self._now
