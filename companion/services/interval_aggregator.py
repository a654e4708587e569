"""Daily hour buckets from workstation occupancy intervals.

All arithmetic happens on UTC instants; the time zone is only used to find
local-midnight boundaries, so DST transitions produce 23h or 25h days
instead of silently shifting hours between buckets.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Iterable, Mapping

from companion.domain.models import DailyBucket, LocationRecord, TimeInterval
from companion.utils.clock import as_utc, local_date, local_midnight


class AggregationWindowError(ValueError):
    """Raised when the aggregation window ends before it starts."""


def _midnight_utc(day: date, tz: tzinfo) -> datetime:
    return local_midnight(day, tz).astimezone(timezone.utc)


def window_days(window_start: datetime, window_end: datetime, tz: tzinfo) -> list[date]:
    """Calendar days (in `tz`) touched by the half-open window."""
    start = as_utc(window_start)
    end = as_utc(window_end)
    if end < start:
        raise AggregationWindowError("window_end must not precede window_start")
    if end == start:
        return []

    days = [local_date(start, tz)]
    while _midnight_utc(days[-1] + timedelta(days=1), tz) < end:
        days.append(days[-1] + timedelta(days=1))
    return days


def aggregate(
    intervals: Iterable[TimeInterval],
    window_start: datetime,
    window_end: datetime,
    tz: tzinfo,
) -> list[DailyBucket]:
    """Sum clipped interval durations into one bucket per local day.

    Open intervals run until `window_end`. Intervals that are empty after
    clipping are ignored; overlapping intervals are counted twice.
    """

    days = window_days(window_start, window_end, tz)
    start = as_utc(window_start)
    end = as_utc(window_end)
    seconds_by_day: dict[date, float] = {day: 0.0 for day in days}

    for interval in intervals:
        segment_start = max(as_utc(interval.begin), start)
        raw_end = as_utc(interval.end) if interval.end is not None else end
        segment_end = min(raw_end, end)
        if segment_end <= segment_start:
            continue

        while segment_start < segment_end:
            day = local_date(segment_start, tz)
            next_midnight = _midnight_utc(day + timedelta(days=1), tz)
            piece_end = min(segment_end, next_midnight)
            seconds_by_day[day] += (piece_end - segment_start).total_seconds()
            segment_start = piece_end

    return [
        DailyBucket(day=local_midnight(day, tz), hours=seconds_by_day[day] / 3600.0)
        for day in days
    ]


def day_window(now: datetime, days: int, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return the window covering the last `days` local days, today included."""
    if days <= 0:
        raise AggregationWindowError("days must be > 0")
    today = local_date(now, tz)
    window_start = local_midnight(today - timedelta(days=days - 1), tz)
    window_end = local_midnight(today + timedelta(days=1), tz)
    return window_start, window_end


def hours_from_duration(value: Any) -> float:
    """Convert an "HH:MM:SS.ffffff" duration string into hours."""
    if not isinstance(value, str):
        return 0.0
    parts = value.strip().split(":")
    if len(parts) < 2:
        return 0.0

    def _number(text: str) -> float:
        try:
            return float(text)
        except ValueError:
            return 0.0

    hours = _number(parts[0])
    minutes = _number(parts[1])
    seconds = _number(parts[2]) if len(parts) >= 3 else 0.0
    return hours + minutes / 60.0 + seconds / 3600.0


def stats_have_value(stats: Mapping[str, Any]) -> bool:
    return any(hours_from_duration(value) > 0 for value in stats.values())


def buckets_from_stats(
    stats: Mapping[str, Any],
    window_start: datetime,
    days: int,
    tz: tzinfo,
) -> list[DailyBucket]:
    """Project a server-side `{"YYYY-MM-DD": duration}` map onto the bucket grid."""
    first_day = local_date(window_start, tz)
    buckets: list[DailyBucket] = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        hours = hours_from_duration(stats.get(day.isoformat()))
        buckets.append(DailyBucket(day=local_midnight(day, tz), hours=hours))
    return buckets


def deduplicate_locations(records: Iterable[LocationRecord]) -> list[LocationRecord]:
    """Drop repeated sessions by id, or by their timing signature when id-less."""
    seen_ids: set[int] = set()
    seen_signatures: set[tuple[Any, Any, Any]] = set()
    result: list[LocationRecord] = []
    for record in records:
        if record.id is not None:
            if record.id in seen_ids:
                continue
            seen_ids.add(record.id)
        else:
            signature = (record.begin_at, record.end_at, record.host)
            if signature in seen_signatures:
                continue
            seen_signatures.add(signature)
        result.append(record)
    return result


def intervals_from_locations(records: Iterable[LocationRecord]) -> list[TimeInterval]:
    intervals: list[TimeInterval] = []
    for record in records:
        interval = record.to_interval()
        if interval is not None:
            intervals.append(interval)
    return intervals


def format_hours(hours: float) -> str:
    minutes = int(round(hours * 60))
    whole_hours, remainder = divmod(minutes, 60)
    if remainder == 0:
        return f"{whole_hours} h"
    return f"{whole_hours} h {remainder} min"

