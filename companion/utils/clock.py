"""Clock, time zone and timestamp helpers shared by every service."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from threading import RLock
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Supplies "now" and the time zone used for calendar-day boundaries."""

    @property
    def tz(self) -> tzinfo: ...

    def now(self) -> datetime: ...


class SystemClock:
    def __init__(self, tz: tzinfo) -> None:
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock:
    """Deterministic clock for tests and replays."""

    def __init__(self, moment: datetime, tz: Optional[tzinfo] = None) -> None:
        if moment.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware moment")
        self._tz = tz or moment.tzinfo
        self._moment = moment
        self._lock = RLock()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        with self._lock:
            return self._moment.astimezone(self._tz)

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._moment = self._moment + timedelta(seconds=seconds)

    def set(self, moment: datetime) -> None:
        with self._lock:
            self._moment = moment


def load_time_zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def as_utc(value: datetime) -> datetime:
    """Normalize to UTC; naive values are API timestamps and therefore UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=tz)


def local_date(value: datetime, tz: tzinfo) -> date:
    return as_utc(value).astimezone(tz).date()


def parse_iso(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 API timestamp, returning None for anything unusable."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return as_utc(parsed)


def iso_string(value: datetime) -> str:
    """Render the UTC form with milliseconds, as the intranet API expects."""
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")
