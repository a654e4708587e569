"""Evaluation slot management and upcoming evaluation lookups."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, tzinfo
from threading import RLock
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from companion.domain.models import DisplaySlot, SlotRecord, UpcomingEvaluation
from companion.repository.api_client import APIError, DecodingError, IntraAPIClient
from companion.services.slot_merger import merge, records_from_payload
from companion.services.ttl_cache import CachePersistenceError, TTLCache, cache_key
from companion.utils.clock import (
    Clock,
    SystemClock,
    as_utc,
    iso_string,
    load_time_zone,
    local_date,
    local_midnight,
    parse_iso,
)
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

ROLE_CORRECTED = "corrected"
ROLE_CORRECTOR = "corrector"


class SlotsError(Exception):
    """Base slot workflow failure."""


class SlotValidationError(SlotsError):
    """Raised when a slot request cannot be sent as-is."""


def anchor_begin(
    day: date,
    now: datetime,
    tz: tzinfo,
    lead_minutes: int = 30,
    step_minutes: int = 15,
) -> datetime:
    """First bookable instant of `day`.

    For today this is `now + lead_minutes`, with seconds dropped and rounded
    up to the next `step_minutes` boundary; any other day starts at local
    midnight.
    """

    if local_date(now, tz) != day:
        return local_midnight(day, tz)
    lead = (as_utc(now) + timedelta(minutes=lead_minutes)).astimezone(tz)
    lead = lead.replace(second=0, microsecond=0)
    add = (step_minutes - lead.minute % step_minutes) % step_minutes
    return (as_utc(lead) + timedelta(minutes=add)).astimezone(tz)


def _chunks(values: Sequence[ItemT], size: int) -> list[Sequence[ItemT]]:
    return [values[index:index + size] for index in range(0, len(values), size)]


def _single_line(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    compact = " ".join(value.split())
    return compact or None


def _logins_from(value: Any) -> list[str]:
    """Collect logins from the loosely typed `correcteds` / `corrector` fields."""
    if isinstance(value, list):
        logins: list[str] = []
        for element in value:
            logins.extend(_logins_from(element))
        return logins
    if isinstance(value, dict):
        login = value.get("login")
        if isinstance(login, str):
            return [login]
        user = value.get("user")
        if isinstance(user, dict) and isinstance(user.get("login"), str):
            return [user["login"]]
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text or text == "invisible":
            return []
        return [text]
    return []


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def _project_id_of(raw: dict[str, Any]) -> Optional[int]:
    team = raw.get("team")
    if not isinstance(team, dict):
        return None
    return _int_or_none(team.get("project_id"))


class SlotsService:
    """Reads, books and releases the signed-in user's evaluation slots."""

    def __init__(
        self,
        client: IntraAPIClient,
        cache: TTLCache,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock(load_time_zone(self._settings.time_zone))
        self._lock = RLock()
        self._user_id: Optional[int] = None

    def _fan_out(
        self,
        action: Callable[[ItemT], ResultT],
        items: Iterable[ItemT],
    ) -> list[tuple[ItemT, ResultT]]:
        work = list(items)
        if not work:
            return []
        workers = min(self._settings.api_fanout_workers, len(work))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="intra-fanout") as pool:
            return list(zip(work, pool.map(action, work)))

    def current_user_id(self) -> int:
        with self._lock:
            if self._user_id is not None:
                return self._user_id
        payload = self._client.request("/v2/me")
        user_id = _int_or_none(payload.get("id")) if isinstance(payload, dict) else None
        if user_id is None:
            raise DecodingError("/v2/me has no numeric id")
        with self._lock:
            self._user_id = user_id
        return user_id

    def today(self) -> date:
        return local_date(self._clock.now(), self._clock.tz)

    def anchor_begin(self, day: date) -> datetime:
        return anchor_begin(
            day,
            self._clock.now(),
            self._clock.tz,
            lead_minutes=self._settings.slot_lead_minutes,
            step_minutes=self._settings.slot_length_minutes,
        )

    def day_slots(self, day: date) -> list[SlotRecord]:
        begin = self.anchor_begin(day)
        end = local_midnight(day + timedelta(days=1), self._clock.tz)
        payload = self._client.request(
            "/v2/me/slots",
            query={
                "range[begin_at]": f"{iso_string(begin)},{iso_string(end)}",
                "page[size]": 100,
            },
        )
        if not isinstance(payload, list):
            raise DecodingError("/v2/me/slots did not return a list")
        return records_from_payload(payload)

    def day_view(self, day: date) -> list[DisplaySlot]:
        return merge(self.day_slots(day), epsilon_seconds=self._settings.slot_merge_epsilon_seconds)

    def _validate_range(self, begin: datetime, end: datetime) -> None:
        if begin.tzinfo is None or end.tzinfo is None:
            raise SlotValidationError("begin and end must carry a time zone")
        if end <= begin:
            raise SlotValidationError("end must be after begin")
        step = self._settings.slot_length_minutes
        for label, value in (("begin", begin), ("end", end)):
            utc_value = as_utc(value)
            if utc_value.second or utc_value.microsecond or utc_value.minute % step:
                raise SlotValidationError(f"{label} must fall on a {step}-minute boundary")
        if as_utc(begin) <= as_utc(self._clock.now()):
            raise SlotValidationError("begin must be in the future")

    def create_slot(self, begin: datetime, end: datetime) -> list[SlotRecord]:
        self._validate_range(begin, end)
        payload = self._client.request(
            "/v2/slots",
            method="POST",
            body={
                "slot": {
                    "user_id": self.current_user_id(),
                    "begin_at": iso_string(begin),
                    "end_at": iso_string(end),
                }
            },
        )
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise DecodingError("/v2/slots did not return slots")
        created = records_from_payload(payload)
        logger.info("Created %d slot(s) from %s to %s", len(created), iso_string(begin), iso_string(end))
        return created

    def _delete_one(self, slot_id: int) -> Optional[APIError]:
        try:
            self._client.request(f"/v2/slots/{slot_id}", method="DELETE")
        except APIError as exc:
            return exc
        try:
            self._cache.remove(cache_key(f"/v2/slots/{slot_id}"))
        except CachePersistenceError as exc:
            logger.warning("Slot %d deleted but its cache entry was kept: %s", slot_id, exc)
        return None

    def delete_slots(self, ids: Iterable[int]) -> None:
        """Delete every id concurrently; the first failure is raised after all finish."""
        unique = list(dict.fromkeys(ids))
        if not unique:
            raise SlotValidationError("at least one slot id is required")
        failures = [
            (slot_id, error)
            for slot_id, error in self._fan_out(self._delete_one, unique)
            if error is not None
        ]
        if failures:
            for slot_id, error in failures:
                logger.warning("Deleting slot %d failed: %s", slot_id, error)
            raise failures[0][1]
        logger.info("Deleted %d slot(s)", len(unique))

    def _fetch_slot_chunk(self, chunk: Sequence[int]) -> list[Any]:
        try:
            payload = self._client.request(
                "/v2/slots",
                query={"filter[id]": ",".join(str(slot_id) for slot_id in chunk), "page[size]": 100},
            )
        except APIError as exc:
            logger.warning("Slot details chunk of %d failed: %s", len(chunk), exc)
            return []
        return payload if isinstance(payload, list) else []

    def slot_details(self, ids: Iterable[int]) -> dict[int, dict[str, Any]]:
        """Raw slot objects by id, served from the cache where still fresh."""
        result: dict[int, dict[str, Any]] = {}
        missing: list[int] = []
        for slot_id in dict.fromkeys(ids):
            cached = self._cache.get(cache_key(f"/v2/slots/{slot_id}"))
            if isinstance(cached, dict):
                result[slot_id] = cached
            else:
                missing.append(slot_id)
        if not missing:
            return result

        chunks = _chunks(missing, self._settings.slot_details_chunk_size)
        for _, items in self._fan_out(self._fetch_slot_chunk, chunks):
            for item in items:
                if not isinstance(item, dict):
                    continue
                slot_id = _int_or_none(item.get("id"))
                if slot_id is None:
                    continue
                result[slot_id] = item
                self._cache.set(
                    cache_key(f"/v2/slots/{slot_id}"),
                    item,
                    ttl=self._settings.slot_cache_ttl_seconds,
                )
        return result

    def _fetch_scale_team(self, scale_team_id: int) -> Any:
        try:
            return self._client.request(f"/v2/scale_teams/{scale_team_id}")
        except APIError as exc:
            logger.warning("Scale team %d lookup failed: %s", scale_team_id, exc)
            return None

    def scale_team_details(self, ids: Iterable[int]) -> dict[int, Any]:
        return {
            scale_team_id: payload
            for scale_team_id, payload in self._fan_out(self._fetch_scale_team, dict.fromkeys(ids))
            if payload is not None
        }

    def _fetch_project_name(self, project_id: int) -> Optional[str]:
        try:
            payload = self._client.request(f"/v2/projects/{project_id}")
        except APIError as exc:
            logger.warning("Project %d lookup failed: %s", project_id, exc)
            return None
        name = payload.get("name") if isinstance(payload, dict) else None
        if not isinstance(name, str):
            return None
        self._cache.set(
            cache_key(f"/v2/projects/{project_id}"),
            name,
            ttl=self._settings.project_name_cache_ttl_seconds,
        )
        return name

    def project_names(self, ids: Iterable[int]) -> dict[int, str]:
        result: dict[int, str] = {}
        missing: list[int] = []
        for project_id in dict.fromkeys(ids):
            cached = self._cache.get(cache_key(f"/v2/projects/{project_id}"))
            if isinstance(cached, str):
                result[project_id] = cached
            else:
                missing.append(project_id)
        for project_id, name in self._fan_out(self._fetch_project_name, missing):
            if name is not None:
                result[project_id] = name
        return result

    def _upcoming_raw(self, role: str) -> list[dict[str, Any]]:
        payload = self._client.request(
            f"/v2/me/scale_teams/as_{role}",
            query={"filter[future]": "true", "page[size]": 100},
        )
        if not isinstance(payload, list):
            raise DecodingError(f"as_{role} did not return a list")
        return [item for item in payload if isinstance(item, dict)]

    @staticmethod
    def _to_evaluation(
        raw: dict[str, Any],
        role: str,
        names: dict[int, str],
    ) -> Optional[UpcomingEvaluation]:
        scale_team_id = _int_or_none(raw.get("id"))
        if scale_team_id is None:
            return None
        scale = raw.get("scale") if isinstance(raw.get("scale"), dict) else {}
        duration_seconds = _int_or_none(scale.get("duration")) or 0
        begin = parse_iso(raw.get("begin_at"))
        end = begin + timedelta(seconds=duration_seconds) if begin is not None else None
        project_id = _project_id_of(raw)
        correctors = _logins_from(raw.get("corrector"))
        return UpcomingEvaluation(
            id=scale_team_id,
            role=role,
            begin_at=begin,
            end_at=end,
            project_name=names.get(project_id) if project_id is not None else None,
            corrected_logins=_logins_from(raw.get("correcteds")),
            corrector_login=correctors[0] if correctors else None,
            duration_minutes=max(0, duration_seconds // 60),
            introduction_line=_single_line(scale.get("introduction_md")),
            guidelines_line=_single_line(scale.get("guidelines_md")),
            disclaimer_line=_single_line(scale.get("disclaimer_md")),
        )

    def upcoming_evaluations(self) -> list[UpcomingEvaluation]:
        """Future evaluations in both roles, soonest first; undated ones last."""
        corrected = self._upcoming_raw(ROLE_CORRECTED)
        corrector = self._upcoming_raw(ROLE_CORRECTOR)
        project_ids: set[int] = set()
        for raw in corrected + corrector:
            project_id = _project_id_of(raw)
            if project_id is not None:
                project_ids.add(project_id)
        names = self.project_names(sorted(project_ids))

        evaluations: list[UpcomingEvaluation] = []
        for role, items in ((ROLE_CORRECTED, corrected), (ROLE_CORRECTOR, corrector)):
            for raw in items:
                evaluation = self._to_evaluation(raw, role, names)
                if evaluation is not None:
                    evaluations.append(evaluation)
        evaluations.sort(
            key=lambda item: (item.begin_at is None, item.begin_at or datetime.min)
        )
        return evaluations
