"""Tests for daily bucket aggregation of occupancy intervals."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from companion.domain.models import LocationRecord, TimeInterval
from companion.services.interval_aggregator import (
    AggregationWindowError,
    aggregate,
    buckets_from_stats,
    day_window,
    deduplicate_locations,
    format_hours,
    hours_from_duration,
    intervals_from_locations,
    stats_have_value,
)
from companion.utils.clock import local_midnight


UTC = timezone.utc
WINDOW_START = datetime(2026, 3, 1, tzinfo=UTC)
WINDOW_END = datetime(2026, 3, 4, tzinfo=UTC)


def _at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


def _hours(intervals: list[TimeInterval]) -> list[float]:
    return [bucket.hours for bucket in aggregate(intervals, WINDOW_START, WINDOW_END, UTC)]


def test_single_afternoon_session_lands_in_first_bucket() -> None:
    assert _hours([TimeInterval(_at(1, 14), _at(1, 16, 30))]) == [2.5, 0.0, 0.0]


def test_buckets_are_local_midnights_in_ascending_order() -> None:
    buckets = aggregate([], WINDOW_START, WINDOW_END, UTC)
    assert [bucket.day for bucket in buckets] == [_at(1, 0), _at(2, 0), _at(3, 0)]
    assert all(bucket.hours == 0.0 for bucket in buckets)


def test_interval_spanning_midnight_is_split() -> None:
    hours = _hours([TimeInterval(_at(1, 22), _at(2, 1, 30))])
    assert hours == [2.0, 1.5, 0.0]
    assert sum(hours) == pytest.approx(3.5)


def test_open_interval_is_clipped_to_window_end() -> None:
    assert _hours([TimeInterval(_at(3, 20), None)]) == [0.0, 0.0, 4.0]


def test_interval_starting_before_window_is_clipped() -> None:
    begin = datetime(2026, 2, 28, 23, tzinfo=UTC)
    assert _hours([TimeInterval(begin, _at(1, 1))]) == [1.0, 0.0, 0.0]


def test_interval_outside_window_is_ignored() -> None:
    before = TimeInterval(datetime(2026, 2, 20, 8, tzinfo=UTC), datetime(2026, 2, 20, 9, tzinfo=UTC))
    after = TimeInterval(_at(5, 8), _at(5, 9))
    assert _hours([before, after]) == [0.0, 0.0, 0.0]


def test_overlapping_intervals_both_contribute() -> None:
    first = TimeInterval(_at(2, 9), _at(2, 11))
    second = TimeInterval(_at(2, 10), _at(2, 12))
    assert _hours([first, second]) == [0.0, 4.0, 0.0]


def test_total_equals_sum_of_durations_for_disjoint_intervals() -> None:
    intervals = [
        TimeInterval(_at(1, 8), _at(1, 9, 15)),
        TimeInterval(_at(1, 23, 45), _at(2, 2)),
        TimeInterval(_at(3, 12, 10), _at(3, 18, 55)),
    ]
    expected = sum((item.end - item.begin).total_seconds() for item in intervals) / 3600
    assert sum(_hours(intervals)) == pytest.approx(expected)


def test_window_end_before_start_raises() -> None:
    with pytest.raises(AggregationWindowError):
        aggregate([], WINDOW_END, WINDOW_START, UTC)


def test_empty_window_yields_no_buckets() -> None:
    assert aggregate([TimeInterval(_at(1, 1), _at(1, 2))], WINDOW_START, WINDOW_START, UTC) == []


def test_spring_forward_day_has_twenty_three_hours() -> None:
    paris = ZoneInfo("Europe/Paris")
    start = local_midnight(date(2026, 3, 29), paris)
    end = local_midnight(date(2026, 3, 30), paris)
    buckets = aggregate([TimeInterval(start, end)], start, end, paris)
    assert len(buckets) == 1
    assert buckets[0].hours == pytest.approx(23.0)


def test_day_window_covers_today_and_previous_days() -> None:
    now = datetime(2026, 3, 4, 10, 7, 30, tzinfo=UTC)
    start, end = day_window(now, 3, UTC)
    assert start == _at(2, 0)
    assert end == _at(5, 0)


def test_day_window_rejects_non_positive_days() -> None:
    with pytest.raises(AggregationWindowError):
        day_window(datetime(2026, 3, 4, tzinfo=UTC), 0, UTC)


def test_hours_from_duration_parses_stats_format() -> None:
    assert hours_from_duration("03:30:00.000000") == pytest.approx(3.5)
    assert hours_from_duration("01:15") == pytest.approx(1.25)
    assert hours_from_duration("01:xx:00") == pytest.approx(1.0)
    assert hours_from_duration("bad") == 0.0
    assert hours_from_duration(None) == 0.0


def test_stats_have_value_ignores_zero_durations() -> None:
    assert not stats_have_value({})
    assert not stats_have_value({"2026-03-02": "00:00:00"})
    assert stats_have_value({"2026-03-02": "00:00:01"})


def test_buckets_from_stats_fills_missing_days_with_zero() -> None:
    buckets = buckets_from_stats({"2026-03-02": "01:30:00"}, _at(2, 0), 3, UTC)
    assert [bucket.hours for bucket in buckets] == [1.5, 0.0, 0.0]
    assert buckets[2].day == _at(4, 0)


def test_deduplicate_by_id_and_signature() -> None:
    records = [
        LocationRecord(1, "2026-03-01T08:00:00Z", "2026-03-01T09:00:00Z", "e1r1p1"),
        LocationRecord(1, "2026-03-01T08:00:00Z", "2026-03-01T09:00:00Z", "e1r1p1"),
        LocationRecord(None, "2026-03-02T08:00:00Z", None, "e1r1p2"),
        LocationRecord(None, "2026-03-02T08:00:00Z", None, "e1r1p2"),
        LocationRecord(2, "2026-03-02T08:00:00Z", None, "e1r1p2"),
    ]
    assert [record.id for record in deduplicate_locations(records)] == [1, None, 2]


def test_malformed_location_records_are_dropped() -> None:
    records = [
        LocationRecord.from_payload({"id": 1, "begin_at": "garbage", "end_at": None}),
        LocationRecord.from_payload({"id": 2, "begin_at": "2026-03-01T10:00:00Z", "end_at": "nope"}),
        LocationRecord.from_payload(
            {"id": 3, "begin_at": "2026-03-01T10:00:00Z", "end_at": "2026-03-01T09:00:00Z"}
        ),
        LocationRecord.from_payload({"id": 4, "begin_at": "2026-03-01T10:00:00.000Z", "end_at": ""}),
    ]
    intervals = intervals_from_locations(records)
    assert intervals == [TimeInterval(_at(1, 10), None)]


def test_format_hours_rounds_to_minutes() -> None:
    assert format_hours(3.0) == "3 h"
    assert format_hours(3.25) == "3 h 15 min"
    assert format_hours(0.0) == "0 h"
    assert format_hours(1 + 59.7 / 60) == "2 h"


def test_window_length_matches_requested_days() -> None:
    start, end = day_window(datetime(2026, 3, 4, 23, 59, tzinfo=UTC), 14, UTC)
    assert len(aggregate([], start, end, UTC)) == 14
    assert end - start == timedelta(days=14)
