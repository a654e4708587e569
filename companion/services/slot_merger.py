"""Merge 15-minute evaluation slots into contiguous display ranges."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from companion.domain.models import DisplaySlot, SlotRecord
from companion.services.interval_aggregator import format_hours
from companion.utils.clock import parse_iso


DEFAULT_ADJACENCY_EPSILON_SECONDS = 0.5


def reservation_key_from(value: Any) -> Optional[int]:
    """Extract the owning scale-team id from a raw `scale_team` value."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    if isinstance(value, dict):
        inner = value.get("id")
        if isinstance(inner, (dict, list)):
            return None
        return reservation_key_from(inner)
    return None


def records_from_payload(items: Iterable[Any]) -> list[SlotRecord]:
    records: list[SlotRecord] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        slot_id = item.get("id")
        if not isinstance(slot_id, int) or isinstance(slot_id, bool):
            continue
        begin = parse_iso(item.get("begin_at"))
        end = parse_iso(item.get("end_at"))
        if begin is None or end is None or end < begin:
            continue
        records.append(
            SlotRecord(
                id=slot_id,
                begin=begin,
                end=end,
                reservation_key=reservation_key_from(item.get("scale_team")),
            )
        )
    return records


def _extends_run(
    record: SlotRecord,
    run: list[SlotRecord],
    run_end_timestamp: float,
    epsilon_seconds: float,
) -> bool:
    head = run[0]
    if record.is_reserved != head.is_reserved:
        return False
    if record.is_reserved and record.reservation_key != head.reservation_key:
        return False
    return abs(record.begin.timestamp() - run_end_timestamp) < epsilon_seconds


def _close_run(run: list[SlotRecord], run_end: SlotRecord) -> DisplaySlot:
    head = run[0]
    return DisplaySlot(
        ids=tuple(record.id for record in run),
        begin=head.begin,
        end=run_end.end,
        is_reserved=head.is_reserved,
        reservation_key=head.reservation_key,
    )


def merge(
    records: Iterable[SlotRecord],
    epsilon_seconds: float = DEFAULT_ADJACENCY_EPSILON_SECONDS,
) -> list[DisplaySlot]:
    """Group time-adjacent records sharing reservation state and owner.

    Adjacency means the next record begins where the run ends (within
    `epsilon_seconds`); overlapping records start a new run.
    """

    ordered = sorted(records, key=lambda record: (record.begin.timestamp(), record.end.timestamp()))
    merged: list[DisplaySlot] = []
    run: list[SlotRecord] = []
    run_end: Optional[SlotRecord] = None

    for record in ordered:
        if run and run_end is not None and _extends_run(
            record, run, run_end.end.timestamp(), epsilon_seconds
        ):
            run.append(record)
            run_end = record
            continue
        if run and run_end is not None:
            merged.append(_close_run(run, run_end))
        run = [record]
        run_end = record

    if run and run_end is not None:
        merged.append(_close_run(run, run_end))
    return merged


def describe(slot: DisplaySlot) -> list[str]:
    badges = ["Reserved" if slot.is_reserved else "Free"]
    if slot.is_reserved and slot.reservation_key is not None:
        badges.append(f"Team #{slot.reservation_key}")
    if len(slot.ids) > 1:
        badges.append(f"{len(slot.ids)} segments")
    seconds = slot.duration.total_seconds()
    if seconds > 0:
        badges.append(format_hours(seconds / 3600.0))
    return badges
