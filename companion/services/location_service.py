"""Daily log time and current workstation lookups for a user."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from companion.domain.models import LocationRecord, LogTimeResult
from companion.repository.api_client import APIError, IntraAPIClient
from companion.services.interval_aggregator import (
    aggregate,
    buckets_from_stats,
    day_window,
    deduplicate_locations,
    intervals_from_locations,
    stats_have_value,
)
from companion.utils.clock import Clock, SystemClock, iso_string, load_time_zone, local_date
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)

SOURCE_STATS = "stats"
SOURCE_STATS_DATE = "stats_date"
SOURCE_LOCATIONS = "locations"


class LogTimeValidationError(ValueError):
    """Raised for unusable login or day-count inputs."""


def _time_zone_name(clock: Clock, fallback: str) -> str:
    key = getattr(clock.tz, "key", None)
    if isinstance(key, str) and key:
        return key
    return fallback


class LocationStatsService:
    """Computes per-day hours with a server-stats-first fallback chain."""

    def __init__(
        self,
        client: IntraAPIClient,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock(load_time_zone(self._settings.time_zone))

    def _validate(self, login: str, days: int) -> str:
        normalized = login.strip().lower()
        if not normalized:
            raise LogTimeValidationError("login must be non-empty")
        if "/" in normalized:
            raise LogTimeValidationError("login must not contain '/'")
        if days < 1 or days > self._settings.logtime_max_days:
            raise LogTimeValidationError(
                f"days must be between 1 and {self._settings.logtime_max_days}"
            )
        return normalized

    def _fetch_stats(self, login: str, begin: str, end: str) -> Optional[dict[str, Any]]:
        try:
            payload = self._client.request(
                f"/v2/users/{login}/locations_stats",
                query={
                    "begin_at": begin,
                    "end_at": end,
                    "time_zone": _time_zone_name(self._clock, self._settings.time_zone),
                },
            )
        except APIError as exc:
            logger.debug("locations_stats for %s failed (%s); falling back", login, exc)
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def _ranged_locations(self, login: str, key: str, window_start: datetime, window_end: datetime) -> list[Any]:
        return self._client.paged_request(
            f"/v2/users/{login}/locations",
            query={f"range[{key}]": f"{iso_string(window_start)},{iso_string(window_end)}"},
        )

    def _active_locations(self, login: str) -> list[Any]:
        return self._client.paged_request(
            f"/v2/users/{login}/locations",
            query={"filter[active]": "true"},
        )

    def daily_hours(self, login: str, days: Optional[int] = None) -> LogTimeResult:
        """Return one bucket per local day for the last `days` days, today included.

        Server statistics are preferred: first with an ISO date-time range,
        then with a date-only range. When neither reports any time, raw
        location sessions are fetched and aggregated locally.
        """

        day_count = days if days is not None else self._settings.logtime_default_days
        normalized = self._validate(login, day_count)
        tz = self._clock.tz
        window_start, window_end = day_window(self._clock.now(), day_count, tz)

        stats = self._fetch_stats(normalized, iso_string(window_start), iso_string(window_end))
        if stats is not None and stats_have_value(stats):
            return LogTimeResult(
                buckets=buckets_from_stats(stats, window_start, day_count, tz),
                source=SOURCE_STATS,
            )

        stats = self._fetch_stats(
            normalized,
            local_date(window_start, tz).isoformat(),
            local_date(window_end, tz).isoformat(),
        )
        if stats is not None and stats_have_value(stats):
            return LogTimeResult(
                buckets=buckets_from_stats(stats, window_start, day_count, tz),
                source=SOURCE_STATS_DATE,
            )

        raw: list[Any] = []
        raw.extend(self._ranged_locations(normalized, "begin_at", window_start, window_end))
        raw.extend(self._ranged_locations(normalized, "end_at", window_start, window_end))
        raw.extend(self._active_locations(normalized))
        records = deduplicate_locations(
            LocationRecord.from_payload(item) for item in raw if isinstance(item, dict)
        )
        logger.info("Aggregating %d location sessions for %s", len(records), normalized)
        return LogTimeResult(
            buckets=aggregate(intervals_from_locations(records), window_start, window_end, tz),
            source=SOURCE_LOCATIONS,
        )

    def current_host(self, login: str) -> Optional[str]:
        """Workstation the user is logged into right now, if any."""
        normalized = self._validate(login, 1)
        path = f"/v2/users/{normalized}/locations"

        active = self._client.request(path, query={"filter[active]": "true", "page[size]": 1})
        if isinstance(active, list) and active and isinstance(active[0], dict):
            record = LocationRecord.from_payload(active[0])
            if record.is_open and record.host:
                return record.host

        recent = self._client.request(path, query={"page[size]": 30, "page[number]": 1})
        if isinstance(recent, list):
            for item in recent:
                if not isinstance(item, dict):
                    continue
                record = LocationRecord.from_payload(item)
                if record.is_open:
                    return record.host
        return None

