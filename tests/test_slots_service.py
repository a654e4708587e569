from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from companion.repository.api_client import HTTPStatusError
from companion.services.slots_service import (
    SlotValidationError,
    SlotsService,
    anchor_begin,
)
from companion.services.ttl_cache import TTLCache, cache_key
from tests.conftest import NOW, FlakyBlobStore, make_response


UTC = timezone.utc


@pytest.fixture
def service(client, cache, settings, clock):
    return SlotsService(client, cache, settings=settings, clock=clock)


def _slot_payload(slot_id: int, minute_offset: int, scale_team=None) -> dict:
    begin = datetime(2026, 3, 4, 11, 0, tzinfo=UTC) + timedelta(minutes=minute_offset)
    return {
        "id": slot_id,
        "begin_at": begin.isoformat().replace("+00:00", "Z"),
        "end_at": (begin + timedelta(minutes=15)).isoformat().replace("+00:00", "Z"),
        "scale_team": scale_team,
    }


# --- anchor ---

def test_anchor_for_today_adds_lead_and_rounds_up() -> None:
    assert anchor_begin(date(2026, 3, 4), NOW, UTC) == datetime(2026, 3, 4, 10, 45, tzinfo=UTC)


def test_anchor_on_a_boundary_is_kept() -> None:
    now = datetime(2026, 3, 4, 10, 15, 40, tzinfo=UTC)
    assert anchor_begin(date(2026, 3, 4), now, UTC) == datetime(2026, 3, 4, 10, 45, tzinfo=UTC)


def test_anchor_can_roll_into_next_hour() -> None:
    now = datetime(2026, 3, 4, 10, 31, tzinfo=UTC)
    assert anchor_begin(date(2026, 3, 4), now, UTC) == datetime(2026, 3, 4, 11, 15, tzinfo=UTC)


def test_anchor_for_other_days_is_local_midnight() -> None:
    paris = ZoneInfo("Europe/Paris")
    anchor = anchor_begin(date(2026, 3, 6), NOW, paris)
    assert anchor == datetime(2026, 3, 6, tzinfo=paris)
    assert anchor.astimezone(UTC) == datetime(2026, 3, 5, 23, tzinfo=UTC)


# --- day view ---

def test_day_view_queries_from_anchor_and_merges(service, session) -> None:
    session.add(
        "GET",
        "/v2/me/slots",
        make_response(
            200,
            [
                _slot_payload(3, 30),
                _slot_payload(1, 0),
                _slot_payload(2, 15),
                _slot_payload(4, 45, scale_team={"id": 900}),
            ],
        ),
    )

    view = service.day_view(date(2026, 3, 4))

    assert [slot.key for slot in view] == ["1-2-3:f", "4:r"]
    assert view[1].reservation_key == 900
    params = session.calls[0]["params"]
    assert params["range[begin_at]"] == "2026-03-04T10:45:00.000Z,2026-03-05T00:00:00.000Z"
    assert params["page[size]"] == 100


def test_future_day_view_starts_at_midnight(service, session) -> None:
    session.add("GET", "/v2/me/slots", make_response(200, []))
    assert service.day_view(date(2026, 3, 5)) == []
    assert session.calls[0]["params"]["range[begin_at]"].startswith("2026-03-05T00:00:00.000Z,")


# --- create ---

def test_create_slot_posts_user_and_range(service, session) -> None:
    session.add("GET", "/v2/me", make_response(200, {"id": 77, "login": "jdoe"}))
    session.add(
        "POST",
        "/v2/slots",
        make_response(201, [_slot_payload(10, 0), _slot_payload(11, 15)]),
    )

    begin = datetime(2026, 3, 4, 11, 0, tzinfo=UTC)
    created = service.create_slot(begin, begin + timedelta(minutes=30))

    assert [record.id for record in created] == [10, 11]
    body = session.calls_to("POST", "/v2/slots")[0]["json"]
    assert body == {
        "slot": {
            "user_id": 77,
            "begin_at": "2026-03-04T11:00:00.000Z",
            "end_at": "2026-03-04T11:30:00.000Z",
        }
    }


def test_user_id_is_looked_up_once(service, session) -> None:
    session.add("GET", "/v2/me", make_response(200, {"id": 77}))
    session.add("POST", "/v2/slots", make_response(201, _slot_payload(10, 0)))

    begin = datetime(2026, 3, 4, 11, 0, tzinfo=UTC)
    service.create_slot(begin, begin + timedelta(minutes=15))
    service.create_slot(begin, begin + timedelta(minutes=15))

    assert len(session.calls_to("GET", "/v2/me")) == 1


@pytest.mark.parametrize(
    "begin, end",
    [
        (datetime(2026, 3, 4, 11, 0), datetime(2026, 3, 4, 11, 30)),
        (datetime(2026, 3, 4, 11, 30, tzinfo=UTC), datetime(2026, 3, 4, 11, 0, tzinfo=UTC)),
        (datetime(2026, 3, 4, 11, 5, tzinfo=UTC), datetime(2026, 3, 4, 11, 30, tzinfo=UTC)),
        (datetime(2026, 3, 4, 11, 0, 30, tzinfo=UTC), datetime(2026, 3, 4, 11, 30, tzinfo=UTC)),
        (datetime(2026, 3, 4, 10, 0, tzinfo=UTC), datetime(2026, 3, 4, 10, 30, tzinfo=UTC)),
    ],
)
def test_create_slot_rejects_invalid_ranges(service, session, begin, end) -> None:
    with pytest.raises(SlotValidationError):
        service.create_slot(begin, end)
    assert session.calls == []


# --- delete ---

def test_delete_slots_removes_each_and_invalidates_cache(service, session, cache) -> None:
    cache.set(cache_key("/v2/slots/1"), {"id": 1})
    cache.set(cache_key("/v2/slots/2"), {"id": 2})
    session.add("DELETE", "/v2/slots/1", make_response(204))
    session.add("DELETE", "/v2/slots/2", make_response(200, text="ok"))

    service.delete_slots([1, 2, 1])

    assert sorted(call["path"] for call in session.calls) == ["/v2/slots/1", "/v2/slots/2"]
    assert cache.get(cache_key("/v2/slots/1")) is None
    assert cache.get(cache_key("/v2/slots/2")) is None


def test_delete_slots_reports_failure_after_all_attempts(service, session, cache) -> None:
    cache.set(cache_key("/v2/slots/2"), {"id": 2})
    session.add("DELETE", "/v2/slots/1", make_response(404, {"error": "Not Found"}))
    session.add("DELETE", "/v2/slots/2", make_response(204))

    with pytest.raises(HTTPStatusError):
        service.delete_slots([1, 2])

    assert len(session.calls) == 2
    assert cache.get(cache_key("/v2/slots/2")) is None


def test_delete_survives_cache_write_failure(client, settings, clock, session) -> None:
    store = FlakyBlobStore()
    cache = TTLCache(store, clock)
    cache.set(cache_key("/v2/slots/1"), {"id": 1})
    store.fail = True
    service = SlotsService(client, cache, settings=settings, clock=clock)
    session.add("DELETE", "/v2/slots/1", make_response(204))
    session.add("DELETE", "/v2/slots/2", make_response(204))

    service.delete_slots([1, 2])

    assert sorted(call["path"] for call in session.calls) == ["/v2/slots/1", "/v2/slots/2"]


def test_delete_slots_requires_ids(service) -> None:
    with pytest.raises(SlotValidationError):
        service.delete_slots([])


# --- enrichment ---

def test_slot_details_uses_cache_and_chunks(client, cache, settings, clock, session) -> None:
    service = SlotsService(client, cache, settings=replace(settings, slot_details_chunk_size=2), clock=clock)
    cache.set(cache_key("/v2/slots/1"), {"id": 1, "cached": True})

    def reply(call):
        ids = [int(value) for value in call["params"]["filter[id]"].split(",")]
        return make_response(200, [{"id": slot_id} for slot_id in ids if slot_id != 4])

    session.add("GET", "/v2/slots", reply)

    details = service.slot_details([1, 2, 3, 4])

    assert details[1] == {"id": 1, "cached": True}
    assert set(details) == {1, 2, 3}
    requested = sorted(call["params"]["filter[id]"] for call in session.calls)
    assert requested == ["2,3", "4"]
    assert cache.get(cache_key("/v2/slots/2")) == {"id": 2}

    session.calls.clear()
    service.slot_details([2, 3])
    assert session.calls == []


def test_slot_details_skips_failed_chunks(service, session) -> None:
    session.add("GET", "/v2/slots", make_response(403))
    assert service.slot_details([5]) == {}


def test_project_names_are_cached(service, session) -> None:
    session.add("GET", "/v2/projects/1", make_response(200, {"id": 1, "name": "libft"}))
    session.add("GET", "/v2/projects/2", make_response(404))

    assert service.project_names([1, 2]) == {1: "libft"}
    session.calls.clear()
    assert service.project_names([1]) == {1: "libft"}
    assert session.calls == []


def test_scale_team_details_skip_failures(service, session) -> None:
    session.add("GET", "/v2/scale_teams/5", make_response(200, {"id": 5}))
    session.add("GET", "/v2/scale_teams/6", make_response(404))
    assert service.scale_team_details([5, 6]) == {5: {"id": 5}}


# --- upcoming evaluations ---

def test_upcoming_evaluations_are_mapped_and_sorted(service, session) -> None:
    session.add(
        "GET",
        "/v2/me/scale_teams/as_corrected",
        make_response(
            200,
            [
                {
                    "id": 31,
                    "begin_at": "2026-03-05T14:00:00.000Z",
                    "scale": {"duration": 2700, "introduction_md": "Be\n  nice"},
                    "team": {"project_id": 1},
                    "correcteds": [{"login": "jdoe"}],
                    "corrector": "invisible",
                },
                {"id": 32, "begin_at": None, "scale": {}, "team": {}},
            ],
        ),
    )
    session.add(
        "GET",
        "/v2/me/scale_teams/as_corrector",
        make_response(
            200,
            [
                {
                    "id": 41,
                    "begin_at": "2026-03-04T16:00:00.000Z",
                    "scale": {"duration": 900},
                    "team": {"project_id": 2},
                    "correcteds": [{"user": {"login": "alice"}}, "bob"],
                    "corrector": {"login": "jdoe"},
                }
            ],
        ),
    )
    session.add("GET", "/v2/projects/1", make_response(200, {"name": "libft"}))
    session.add("GET", "/v2/projects/2", make_response(200, {"name": "push_swap"}))

    evaluations = service.upcoming_evaluations()

    assert [item.id for item in evaluations] == [41, 31, 32]
    first, second, undated = evaluations
    assert first.role == "corrector"
    assert first.project_name == "push_swap"
    assert first.corrected_logins == ["alice", "bob"]
    assert first.corrector_login == "jdoe"
    assert first.end_at == datetime(2026, 3, 4, 16, 15, tzinfo=UTC)
    assert second.role == "corrected"
    assert second.duration_minutes == 45
    assert second.corrector_login is None
    assert second.introduction_line == "Be nice"
    assert undated.begin_at is None
    assert undated.project_name is None
    assert second.to_dict()["begin_at"] == "2026-03-05T14:00:00.000Z"
