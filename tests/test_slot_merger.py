from __future__ import annotations

from datetime import datetime, timedelta, timezone

from companion.domain.models import SlotRecord
from companion.services.slot_merger import (
    describe,
    merge,
    records_from_payload,
    reservation_key_from,
)


BASE = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


def _slot(slot_id: int, index: int, key=None, shift_seconds: float = 0.0) -> SlotRecord:
    begin = BASE + timedelta(minutes=15 * index, seconds=shift_seconds)
    return SlotRecord(slot_id, begin, begin + timedelta(minutes=15), key)


def _boundaries(slots):
    return [(slot.begin, slot.end, slot.is_reserved, slot.reservation_key) for slot in slots]


def test_free_and_reserved_runs_are_grouped() -> None:
    records = [_slot(index + 1, index) for index in range(4)]
    records += [_slot(5, 4, key=42), _slot(6, 5, key=42)]

    merged = merge(records)

    assert [slot.ids for slot in merged] == [(1, 2, 3, 4), (5, 6)]
    assert [slot.key for slot in merged] == ["1-2-3-4:f", "5-6:r"]
    assert merged[0].begin == BASE
    assert merged[0].end == BASE + timedelta(hours=1)
    assert merged[1].reservation_key == 42


def test_reserved_slots_with_different_keys_never_merge() -> None:
    merged = merge([_slot(7, 0, key=1), _slot(8, 1, key=2)])
    assert [slot.ids for slot in merged] == [(7,), (8,)]


def test_gap_breaks_the_run() -> None:
    merged = merge([_slot(1, 0), _slot(2, 2)])
    assert [slot.ids for slot in merged] == [(1,), (2,)]


def test_adjacency_tolerates_sub_second_drift() -> None:
    assert [slot.ids for slot in merge([_slot(1, 0), _slot(2, 1, shift_seconds=0.3)])] == [(1, 2)]
    assert [slot.ids for slot in merge([_slot(1, 0), _slot(2, 1, shift_seconds=1.0)])] == [(1,), (2,)]


def test_input_order_does_not_matter() -> None:
    records = [_slot(3, 2), _slot(1, 0), _slot(2, 1)]
    assert [slot.ids for slot in merge(records)] == [(1, 2, 3)]


def test_empty_and_single_inputs() -> None:
    assert merge([]) == []
    single = merge([_slot(9, 0)])
    assert len(single) == 1
    assert single[0].ids == (9,)
    assert not single[0].is_reserved


def test_merge_is_idempotent_on_boundaries() -> None:
    records = [_slot(index + 1, index) for index in range(4)]
    records += [_slot(5, 4, key=42), _slot(6, 5, key=42), _slot(7, 6, key=43)]
    merged = merge(records)

    again = merge([record for slot in merged for record in slot.to_records()])

    assert _boundaries(again) == _boundaries(merged)


def test_reservation_key_shapes() -> None:
    assert reservation_key_from(None) is None
    assert reservation_key_from(12) == 12
    assert reservation_key_from(12.0) == 12
    assert reservation_key_from("34") == 34
    assert reservation_key_from("invisible") is None
    assert reservation_key_from({"id": 56}) == 56
    assert reservation_key_from({"id": "78"}) == 78
    assert reservation_key_from({"id": None}) is None
    assert reservation_key_from(True) is None
    assert reservation_key_from([1]) is None


def test_records_from_payload_drops_malformed_items() -> None:
    payload = [
        {"id": 1, "begin_at": "2026-03-04T10:00:00.000Z", "end_at": "2026-03-04T10:15:00.000Z", "scale_team": None},
        {"id": 2, "begin_at": "2026-03-04T10:15:00.000Z", "end_at": "2026-03-04T10:30:00.000Z", "scale_team": {"id": 9}},
        {"id": "3", "begin_at": "2026-03-04T10:30:00.000Z", "end_at": "2026-03-04T10:45:00.000Z"},
        {"id": 4, "begin_at": None, "end_at": "2026-03-04T10:45:00.000Z"},
        "not-an-object",
    ]
    records = records_from_payload(payload)
    assert [record.id for record in records] == [1, 2]
    assert records[1].reservation_key == 9
    assert records[0].begin == BASE


def test_describe_lists_badges() -> None:
    merged = merge([_slot(5, 0, key=42), _slot(6, 1, key=42), _slot(7, 2, key=42), _slot(8, 3, key=42), _slot(9, 4, key=42)])
    assert describe(merged[0]) == ["Reserved", "Team #42", "5 segments", "1 h 15 min"]
    assert describe(merge([_slot(1, 0)])[0]) == ["Free", "0 h 15 min"]
