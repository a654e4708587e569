"""Fallback chain tests for daily log time and workstation lookups."""

from __future__ import annotations

import pytest

from companion.repository.api_client import HTTPStatusError, IntraAPIClient
from companion.services.location_service import (
    SOURCE_LOCATIONS,
    SOURCE_STATS,
    SOURCE_STATS_DATE,
    LocationStatsService,
    LogTimeValidationError,
)
from tests.conftest import FakeSession, make_response


STATS_PATH = "/v2/users/jdoe/locations_stats"
LOCATIONS_PATH = "/v2/users/jdoe/locations"


@pytest.fixture
def service(client, settings, clock):
    return LocationStatsService(client, settings=settings, clock=clock)


def _stats_reply(iso_payload, date_payload):
    def reply(call):
        if "T" in call["params"]["begin_at"]:
            return iso_payload
        return date_payload

    return reply


def _locations_reply(by_begin, by_end, active):
    def reply(call):
        params = call["params"]
        if "range[begin_at]" in params:
            return make_response(200, by_begin)
        if "range[end_at]" in params:
            return make_response(200, by_end)
        return make_response(200, active)

    return reply


def test_iso_stats_are_used_first(service, session) -> None:
    session.add(
        "GET",
        STATS_PATH,
        _stats_reply(make_response(200, {"2026-03-03": "02:30:00.000000"}), make_response(200, {})),
    )

    result = service.daily_hours("JDoe", days=3)

    assert result.source == SOURCE_STATS
    assert [bucket.hours for bucket in result.buckets] == [0.0, 2.5, 0.0]
    params = session.calls[0]["params"]
    assert params["begin_at"] == "2026-03-02T00:00:00.000Z"
    assert params["end_at"] == "2026-03-05T00:00:00.000Z"
    assert params["time_zone"] == "UTC"
    assert len(session.calls) == 1


def test_date_only_stats_when_iso_range_is_empty(service, session) -> None:
    session.add(
        "GET",
        STATS_PATH,
        _stats_reply(make_response(200, {"2026-03-03": "00:00:00"}), make_response(200, {"2026-03-04": "01:00:00"})),
    )

    result = service.daily_hours("jdoe", days=3)

    assert result.source == SOURCE_STATS_DATE
    assert [bucket.hours for bucket in result.buckets] == [0.0, 0.0, 1.0]
    assert session.calls[1]["params"]["begin_at"] == "2026-03-02"
    assert session.calls[1]["params"]["end_at"] == "2026-03-05"


def test_raw_locations_when_stats_fail(service, session) -> None:
    session.add("GET", STATS_PATH, make_response(404, {"error": "Not Found"}))
    shared = {"id": 1, "begin_at": "2026-03-02T22:00:00Z", "end_at": "2026-03-03T01:00:00Z", "host": "e1r1p1"}
    open_session = {"id": 2, "begin_at": "2026-03-04T09:00:00Z", "end_at": None, "host": "e1r2p3"}
    session.add("GET", LOCATIONS_PATH, _locations_reply([shared], [shared], [open_session]))

    result = service.daily_hours("jdoe", days=3)

    assert result.source == SOURCE_LOCATIONS
    hours = [bucket.hours for bucket in result.buckets]
    assert hours[0] == pytest.approx(2.0)
    assert hours[1] == pytest.approx(1.0)
    # Open session is clipped to the end of today.
    assert hours[2] == pytest.approx(15.0)

    location_calls = session.calls_to("GET", LOCATIONS_PATH)
    assert len(location_calls) == 3
    assert location_calls[0]["params"]["range[begin_at]"] == "2026-03-02T00:00:00.000Z,2026-03-05T00:00:00.000Z"
    assert location_calls[2]["params"]["filter[active]"] == "true"


def test_paths_agree_on_the_same_sessions(service, session, auth_service, settings, clock) -> None:
    sessions = [
        {"id": 1, "begin_at": "2026-03-02T08:00:00Z", "end_at": "2026-03-02T11:15:00Z"},
        {"id": 2, "begin_at": "2026-03-03T13:00:00Z", "end_at": "2026-03-03T14:00:00Z"},
    ]
    session.add("GET", STATS_PATH, make_response(200, {}))
    session.add("GET", LOCATIONS_PATH, _locations_reply(sessions, sessions, []))
    from_locations = service.daily_hours("jdoe", days=3)

    stats_session = FakeSession()
    stats_session.add(
        "GET",
        STATS_PATH,
        make_response(200, {"2026-03-02": "03:15:00.000000", "2026-03-03": "01:00:00.000000"}),
    )
    stats_client = IntraAPIClient(
        auth_service=auth_service, settings=settings, session=stats_session, sleep=lambda _: None
    )
    from_stats = LocationStatsService(stats_client, settings=settings, clock=clock).daily_hours("jdoe", days=3)

    assert [b.hours for b in from_locations.buckets] == pytest.approx([b.hours for b in from_stats.buckets])
    assert from_locations.total_hours == pytest.approx(4.25)


def test_raw_location_errors_propagate(service, session) -> None:
    session.add("GET", STATS_PATH, make_response(200, {}))
    session.add("GET", LOCATIONS_PATH, make_response(403, {"error": "Forbidden"}))

    with pytest.raises(HTTPStatusError):
        service.daily_hours("jdoe", days=3)


def test_default_day_count_comes_from_settings(service, session, settings) -> None:
    session.add("GET", STATS_PATH, make_response(200, {"2026-03-04": "01:00:00"}))
    result = service.daily_hours("jdoe")
    assert len(result.buckets) == settings.logtime_default_days


@pytest.mark.parametrize(
    "login, days",
    [("", 3), ("   ", 3), ("a/b", 3), ("jdoe", 0), ("jdoe", 10_000)],
)
def test_invalid_inputs_are_rejected(service, session, login, days) -> None:
    with pytest.raises(LogTimeValidationError):
        service.daily_hours(login, days=days)
    assert session.calls == []


def test_current_host_from_active_filter(service, session) -> None:
    session.add(
        "GET",
        LOCATIONS_PATH,
        make_response(200, [{"id": 9, "begin_at": "2026-03-04T08:00:00Z", "end_at": None, "host": "e2r4p7"}]),
    )

    assert service.current_host("jdoe") == "e2r4p7"
    assert session.calls[0]["params"] == {"filter[active]": "true", "page[size]": 1}


def test_current_host_scans_recent_sessions(service, session) -> None:
    recent = [
        {"id": 11, "begin_at": "2026-03-04T07:00:00Z", "end_at": "2026-03-04T08:00:00Z", "host": "e1r1p1"},
        {"id": 12, "begin_at": "2026-03-04T09:00:00Z", "end_at": None, "host": "e1r1p2"},
    ]

    def reply(call):
        if "filter[active]" in call["params"]:
            return make_response(200, [])
        return make_response(200, recent)

    session.add("GET", LOCATIONS_PATH, reply)

    assert service.current_host("jdoe") == "e1r1p2"
    assert session.calls[1]["params"] == {"page[size]": 30, "page[number]": 1}


def test_current_host_when_logged_out(service, session) -> None:
    closed = [{"id": 11, "begin_at": "2026-03-04T07:00:00Z", "end_at": "2026-03-04T08:00:00Z", "host": "e1r1p1"}]

    def reply(call):
        if "filter[active]" in call["params"]:
            return make_response(200, [])
        return make_response(200, closed)

    session.add("GET", LOCATIONS_PATH, reply)
    assert service.current_host("jdoe") is None
