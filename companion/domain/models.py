"""Domain models for time accounting, evaluation slots, profiles and campus views."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from companion.utils.clock import iso_string, parse_iso


@dataclass(frozen=True)
class TimeInterval:
    begin: datetime
    end: Optional[datetime] = None


@dataclass(frozen=True)
class DailyBucket:
    day: datetime
    hours: float


@dataclass(frozen=True)
class LocationRecord:
    """Raw workstation session as returned by the locations endpoint."""

    id: Optional[int]
    begin_at: Optional[str]
    end_at: Optional[str]
    host: Optional[str]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "LocationRecord":
        raw_id = payload.get("id")
        return cls(
            id=raw_id if isinstance(raw_id, int) and not isinstance(raw_id, bool) else None,
            begin_at=payload.get("begin_at"),
            end_at=payload.get("end_at") or None,
            host=payload.get("host") or None,
        )

    @property
    def is_open(self) -> bool:
        return not self.end_at

    def to_interval(self) -> Optional[TimeInterval]:
        begin = parse_iso(self.begin_at)
        if begin is None:
            return None
        end = parse_iso(self.end_at)
        if self.end_at and end is None:
            return None
        if end is not None and end < begin:
            return None
        return TimeInterval(begin=begin, end=end)


@dataclass(frozen=True)
class LogTimeResult:
    buckets: list[DailyBucket]
    source: str

    @property
    def total_hours(self) -> float:
        return sum(bucket.hours for bucket in self.buckets)

    @property
    def average_hours(self) -> float:
        if not self.buckets:
            return 0.0
        return self.total_hours / len(self.buckets)


@dataclass(frozen=True)
class SlotRecord:
    id: int
    begin: datetime
    end: datetime
    reservation_key: Optional[int] = None

    @property
    def is_reserved(self) -> bool:
        return self.reservation_key is not None


@dataclass(frozen=True)
class DisplaySlot:
    ids: tuple[int, ...]
    begin: datetime
    end: datetime
    is_reserved: bool
    reservation_key: Optional[int] = None

    @property
    def key(self) -> str:
        suffix = "r" if self.is_reserved else "f"
        return "-".join(str(slot_id) for slot_id in self.ids) + f":{suffix}"

    @property
    def duration(self) -> timedelta:
        return self.end - self.begin

    def to_records(self) -> tuple[SlotRecord, ...]:
        """Collapse the run back into a single boundary record."""
        return (
            SlotRecord(
                id=self.ids[0],
                begin=self.begin,
                end=self.end,
                reservation_key=self.reservation_key,
            ),
        )


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class UpcomingEvaluation:
    id: int
    role: str
    begin_at: Optional[datetime]
    end_at: Optional[datetime]
    project_name: Optional[str]
    corrected_logins: list[str]
    corrector_login: Optional[str]
    duration_minutes: int
    introduction_line: Optional[str] = None
    guidelines_line: Optional[str] = None
    disclaimer_line: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "begin_at": iso_string(self.begin_at) if self.begin_at else None,
            "end_at": iso_string(self.end_at) if self.end_at else None,
            "project_name": self.project_name,
            "corrected_logins": list(self.corrected_logins),
            "corrector_login": self.corrector_login,
            "duration_minutes": self.duration_minutes,
            "introduction_line": self.introduction_line,
            "guidelines_line": self.guidelines_line,
            "disclaimer_line": self.disclaimer_line,
        }


@dataclass(frozen=True)
class Coalition:
    id: int
    name: str
    slug: Optional[str]
    color: Optional[str]
    image_url: Optional[str]
    score: Optional[int]
    rank: Optional[int]


@dataclass(frozen=True)
class Project:
    slug: str
    name: str
    final_mark: Optional[int]
    validated: Optional[bool]
    closed_at: Optional[datetime]
    retry: Optional[int]
    cursus_id: Optional[int]
    created_at: Optional[datetime]
    project_url: str


@dataclass(frozen=True)
class ActiveProject:
    slug: str
    name: str
    status: Optional[str]
    team_status: Optional[str]
    registered_at: Optional[datetime]
    cursus_id: Optional[int]
    retry: Optional[int]
    project_url: str


@dataclass(frozen=True)
class Cursus:
    id: int
    name: Optional[str]
    grade: Optional[str]
    level: Optional[float]


@dataclass(frozen=True)
class UserProfile:
    login: str
    display_name: str
    wallet: int
    correction_point: int
    image_url: Optional[str]
    campus_name: Optional[str]
    pool_month: Optional[str]
    pool_year: Optional[str]
    kind: Optional[str]
    email: Optional[str]
    cursus: list[Cursus] = field(default_factory=list)


@dataclass(frozen=True)
class CampusInfo:
    id: int
    name: str
    city: Optional[str] = None
    country: Optional[str] = None
    time_zone: Optional[str] = None
    website: Optional[str] = None
    users_count: Optional[int] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class CampusEvent:
    id: int
    title: str
    when: str
    begin_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    location: Optional[str] = None
    badges: list[str] = field(default_factory=list)
    description: Optional[str] = None


@dataclass(frozen=True)
class CampusDashboard:
    info: CampusInfo
    active_users_count: int
    upcoming_events: list[CampusEvent]
    fetched_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "info": dict(vars(self.info)),
            "active_users_count": self.active_users_count,
            "upcoming_events": [
                {
                    **vars(event),
                    "badges": list(event.badges),
                    "begin_at": iso_string(event.begin_at) if event.begin_at else None,
                    "end_at": iso_string(event.end_at) if event.end_at else None,
                }
                for event in self.upcoming_events
            ],
            "fetched_at": iso_string(self.fetched_at),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CampusDashboard":
        """Rebuild a dashboard saved by `to_dict`; raises on a malformed document."""
        fetched_at = parse_iso(payload.get("fetched_at"))
        if fetched_at is None:
            raise ValueError("campus dashboard has no fetched_at")
        events = []
        for item in payload.get("upcoming_events") or []:
            events.append(
                CampusEvent(
                    **{
                        **item,
                        "begin_at": parse_iso(item.get("begin_at")),
                        "end_at": parse_iso(item.get("end_at")),
                    }
                )
            )
        return cls(
            info=CampusInfo(**payload["info"]),
            active_users_count=int(payload["active_users_count"]),
            upcoming_events=events,
            fetched_at=fetched_at,
        )


@dataclass(frozen=True)
class UserSummary:
    id: int
    login: str
    display_name: str
    image_url: Optional[str] = None
    primary_campus_id: Optional[int] = None
    pool_year: Optional[str] = None
