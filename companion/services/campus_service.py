"""Campus dashboard: campus details, live occupancy and upcoming events."""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, tzinfo
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Optional

from companion.domain.models import CampusDashboard, CampusEvent, CampusInfo
from companion.repository.api_client import APIError, DecodingError, IntraAPIClient
from companion.repository.blob_store import BlobStore, FileBlobStore
from companion.services.profile_service import SectionState
from companion.utils.clock import Clock, SystemClock, as_utc, load_time_zone, parse_iso
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger
from companion.utils.periodic import PeriodicTask


logger = get_logger(__name__)

EVENT_TIME_FORMAT = "%Y-%m-%d %H:%M"
UNSCHEDULED_EVENT_LABEL = "Date to be announced"


class CampusValidationError(ValueError):
    """Raised for an unusable campus id."""


def _text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def address_line(payload: dict[str, Any]) -> Optional[str]:
    """Join street, zip and city, skipping blank parts."""
    parts = [_text(payload.get(name)) for name in ("address", "zip", "city")]
    present = [part for part in parts if part]
    return ", ".join(present) if present else None


def build_campus_info(payload: Any) -> CampusInfo:
    if not isinstance(payload, dict):
        raise DecodingError("campus endpoint did not return an object")
    campus_id = _int_or_none(payload.get("id"))
    name = _text(payload.get("name"))
    if campus_id is None or name is None:
        raise DecodingError("campus payload has no id or name")
    return CampusInfo(
        id=campus_id,
        name=name,
        city=_text(payload.get("city")),
        country=_text(payload.get("country")),
        time_zone=_text(payload.get("time_zone")),
        website=_text(payload.get("website")),
        users_count=_int_or_none(payload.get("users_count")),
        address=address_line(payload),
    )


def event_when(begin: Optional[datetime], end: Optional[datetime], tz: tzinfo) -> str:
    if begin is None:
        return UNSCHEDULED_EVENT_LABEL
    start = begin.astimezone(tz).strftime(EVENT_TIME_FORMAT)
    if end is None:
        return start
    return f"{start} → {end.astimezone(tz).strftime(EVENT_TIME_FORMAT)}"


def event_badges(payload: dict[str, Any]) -> list[str]:
    badges: list[str] = []
    kind = _text(payload.get("kind"))
    if kind:
        badges.append(kind.replace("_", " ").title())
    subscribers = _int_or_none(payload.get("nbr_subscribers"))
    if subscribers is not None:
        badges.append(f"Subscribers {subscribers}")
    places = _int_or_none(payload.get("max_people"))
    if places is not None:
        badges.append(f"Places {places}")
    return badges


def map_event(payload: Any, tz: tzinfo) -> Optional[CampusEvent]:
    if not isinstance(payload, dict):
        return None
    event_id = _int_or_none(payload.get("id"))
    title = _text(payload.get("name"))
    if event_id is None or title is None:
        return None
    begin = parse_iso(payload.get("begin_at"))
    end = parse_iso(payload.get("end_at"))
    return CampusEvent(
        id=event_id,
        title=title,
        when=event_when(begin, end, tz),
        begin_at=begin,
        end_at=end,
        location=_text(payload.get("location")),
        badges=event_badges(payload),
        description=_text(payload.get("description")),
    )


def _event_order(payload: dict[str, Any]) -> tuple[bool, datetime, str]:
    raw = payload.get("begin_at")
    begin = parse_iso(raw)
    return begin is None, begin or as_utc(datetime.max), raw if isinstance(raw, str) else ""


class CampusService:
    """Reads the campus record, its active sessions and its future events."""

    def __init__(
        self,
        client: IntraAPIClient,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock(load_time_zone(self._settings.time_zone))

    @staticmethod
    def _validate(campus_id: int) -> None:
        if isinstance(campus_id, bool) or not isinstance(campus_id, int) or campus_id <= 0:
            raise CampusValidationError("campus_id must be a positive integer")

    def fetch_info(self, campus_id: int) -> CampusInfo:
        self._validate(campus_id)
        return build_campus_info(self._client.request(f"/v2/campus/{campus_id}"))

    def active_users_count(self, campus_id: int) -> int:
        self._validate(campus_id)
        sessions = self._client.paged_request(
            f"/v2/campus/{campus_id}/locations",
            query={"filter[active]": "true"},
        )
        return len(sessions)

    def upcoming_events(self, campus_id: int, limit: Optional[int] = None) -> list[CampusEvent]:
        """Future events sorted by start time; unscheduled ones come last."""
        self._validate(campus_id)
        limit = self._settings.campus_events_limit if limit is None else limit
        if limit <= 0:
            raise CampusValidationError("limit must be > 0")
        raw = self._client.paged_request(
            f"/v2/campus/{campus_id}/events",
            query={"filter[future]": "true"},
        )
        ordered = sorted((item for item in raw if isinstance(item, dict)), key=_event_order)
        events = [event for event in (map_event(item, self._clock.tz) for item in ordered) if event]
        return events[:limit]

    def dashboard(self, campus_id: int) -> CampusDashboard:
        self._validate(campus_id)
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="campus-refresh") as pool:
            info = pool.submit(self.fetch_info, campus_id)
            active = pool.submit(self.active_users_count, campus_id)
            events = pool.submit(self.upcoming_events, campus_id)
            return CampusDashboard(
                info=info.result(),
                active_users_count=active.result(),
                upcoming_events=events.result(),
                fetched_at=as_utc(self._clock.now()),
            )


@dataclass(frozen=True)
class CampusSnapshot:
    campus_id: int
    state: SectionState
    dashboard: Optional[CampusDashboard]
    last_updated: Optional[datetime]


class CampusLoader:
    """Serves one campus dashboard, preferring a recent saved copy.

    `prime()` restores the saved dashboard and only contacts the intranet
    when that copy is missing or older than the cache TTL. Every refresh
    captures a token; a result arriving after `stop()` or a newer refresh
    is dropped. A failed refresh keeps the last dashboard.
    """

    def __init__(
        self,
        service: CampusService,
        blob_store: BlobStore,
        campus_id: int,
        clock: Clock,
        cache_ttl_seconds: float = 300.0,
    ) -> None:
        if cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be > 0")
        self._service = service
        self._blob_store = blob_store
        self.campus_id = campus_id
        self._clock = clock
        self._cache_ttl_seconds = cache_ttl_seconds
        self._lock = RLock()
        self._token = 0
        self._primed = False
        self._state = SectionState.IDLE
        self._dashboard: Optional[CampusDashboard] = None

    def snapshot(self) -> CampusSnapshot:
        with self._lock:
            return CampusSnapshot(
                campus_id=self.campus_id,
                state=self._state,
                dashboard=self._dashboard,
                last_updated=self._dashboard.fetched_at if self._dashboard else None,
            )

    def _load_saved(self) -> Optional[CampusDashboard]:
        try:
            blob = self._blob_store.load()
        except OSError as exc:
            logger.warning("Campus %d cache unreadable: %s", self.campus_id, exc)
            return None
        if not blob:
            return None
        try:
            document = json.loads(blob.decode("utf-8"))
            if document.get("campus_id") != self.campus_id:
                return None
            return CampusDashboard.from_dict(document["dashboard"])
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring unusable campus %d cache: %s", self.campus_id, exc)
            return None

    def _save(self, dashboard: CampusDashboard) -> None:
        document = {"campus_id": self.campus_id, "dashboard": dashboard.to_dict()}
        try:
            self._blob_store.save(json.dumps(document, separators=(",", ":")).encode("utf-8"))
        except OSError as exc:
            logger.warning("Campus %d dashboard not saved: %s", self.campus_id, exc)

    def prime(self) -> CampusSnapshot:
        saved = self._load_saved()
        with self._lock:
            self._primed = True
            if saved is not None:
                self._dashboard = saved
                age = (as_utc(self._clock.now()) - saved.fetched_at).total_seconds()
                if age < self._cache_ttl_seconds:
                    self._state = SectionState.LOADED
                    logger.info("Campus %d served from cache (%.0f s old)", self.campus_id, age)
                    return self.snapshot()
        return self.refresh_now()

    def refresh_now(self) -> CampusSnapshot:
        """Fetch a new dashboard; upstream errors are raised after the state is updated."""
        with self._lock:
            self._token += 1
            token = self._token
            self._state = SectionState.LOADING

        try:
            dashboard = self._service.dashboard(self.campus_id)
        except APIError:
            with self._lock:
                if token == self._token:
                    self._state = SectionState.LOADED if self._dashboard else SectionState.FAILED
            raise

        with self._lock:
            if token != self._token:
                logger.info("Discarding campus %d result from superseded refresh %d", self.campus_id, token)
                return self.snapshot()
            self._dashboard = dashboard
            self._state = SectionState.LOADED
        self._save(dashboard)
        return self.snapshot()

    def poll(self) -> None:
        """One auto-refresh tick: prime on first use, refresh afterwards."""
        try:
            if self._primed:
                self.refresh_now()
            else:
                self.prime()
        except APIError as exc:
            logger.warning("Campus %d refresh failed: %s", self.campus_id, exc)

    def stop(self) -> None:
        with self._lock:
            self._token += 1
            self._primed = False
            self._dashboard = None
            self._state = SectionState.IDLE

    def clear_cache(self) -> None:
        self.stop()
        self._blob_store.clear()
        logger.info("Campus %d cache cleared", self.campus_id)


class CampusLoaders:
    """One `CampusLoader` per campus id, created on first use."""

    def __init__(
        self,
        service: CampusService,
        clock: Clock,
        settings: Optional[Settings] = None,
        blob_store_factory: Optional[Callable[[int], BlobStore]] = None,
    ) -> None:
        self._service = service
        self._clock = clock
        self._settings = settings or get_settings()
        self._blob_store_factory = blob_store_factory or self._file_store
        self._lock = RLock()
        self._loaders: dict[int, CampusLoader] = {}

    def _file_store(self, campus_id: int) -> BlobStore:
        return FileBlobStore(Path(self._settings.campus_cache_dir) / f"campus_cache_{campus_id}.json")

    def loader_for(self, campus_id: int) -> CampusLoader:
        CampusService._validate(campus_id)
        with self._lock:
            loader = self._loaders.get(campus_id)
            if loader is None:
                loader = CampusLoader(
                    self._service,
                    self._blob_store_factory(campus_id),
                    campus_id,
                    self._clock,
                    cache_ttl_seconds=self._settings.campus_cache_ttl_seconds,
                )
                self._loaders[campus_id] = loader
            return loader


def build_campus_refresher(loader: CampusLoader, interval_seconds: float) -> PeriodicTask:
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be > 0")
    return PeriodicTask(
        name=f"campus-refresh-{loader.campus_id}",
        action=loader.poll,
        delay=interval_seconds,
        run_immediately=True,
    )
