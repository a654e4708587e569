"""Profile sections with stale-while-revalidate refresh cycles."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import RLock
from typing import Any, Callable, Optional
from urllib.parse import quote

from companion.domain.models import ActiveProject, Coalition, Cursus, Project, UserProfile
from companion.repository.api_client import APIError, DecodingError, IntraAPIClient
from companion.services.ttl_cache import TTLCache
from companion.utils.clock import Clock, SystemClock, as_utc, iso_string, load_time_zone, parse_iso
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger
from companion.utils.periodic import PeriodicTask


logger = get_logger(__name__)

PROJECT_URL_TEMPLATE = "https://projects.intra.42.fr/projects/{slug}"
FINISHED_PROJECT_STATUSES = frozenset({"finished", "waiting_for_correction"})
FINISHED_TEAM_STATUSES = frozenset({"finished", "closed"})


class SectionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class ProfileValidationError(ValueError):
    """Raised for an unusable login."""


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def build_profile(payload: dict[str, Any]) -> UserProfile:
    login = payload.get("login")
    if not isinstance(login, str) or not login:
        raise DecodingError("user payload has no login")

    image = payload.get("image")
    campus = payload.get("campus")
    campus_name = None
    if isinstance(campus, list) and campus and isinstance(campus[0], dict):
        campus_name = _str_or_none(campus[0].get("name"))

    cursus: list[Cursus] = []
    for item in payload.get("cursus_users") or []:
        if not isinstance(item, dict):
            continue
        inner = item.get("cursus") if isinstance(item.get("cursus"), dict) else {}
        level = item.get("level")
        cursus.append(
            Cursus(
                id=_int_or_none(item.get("cursus_id")) or 0,
                name=_str_or_none(inner.get("name")),
                grade=_str_or_none(item.get("grade")),
                level=float(level) if isinstance(level, (int, float)) and not isinstance(level, bool) else None,
            )
        )

    return UserProfile(
        login=login,
        display_name=_str_or_none(payload.get("displayname")) or login,
        wallet=_int_or_none(payload.get("wallet")) or 0,
        correction_point=_int_or_none(payload.get("correction_point")) or 0,
        image_url=_str_or_none(image.get("link")) if isinstance(image, dict) else None,
        campus_name=campus_name,
        pool_month=_str_or_none(payload.get("pool_month")),
        pool_year=_str_or_none(payload.get("pool_year")),
        kind=_str_or_none(payload.get("kind")),
        email=_str_or_none(payload.get("email")),
        cursus=cursus,
    )


def merge_coalitions(coalitions: list[Any], coalition_users: list[Any]) -> list[Coalition]:
    """Attach the user's score and rank to each coalition by `coalition_id`."""
    memberships: dict[int, dict[str, Any]] = {}
    for item in coalition_users:
        if isinstance(item, dict):
            coalition_id = _int_or_none(item.get("coalition_id"))
            if coalition_id is not None and coalition_id not in memberships:
                memberships[coalition_id] = item

    merged: list[Coalition] = []
    for item in coalitions:
        if not isinstance(item, dict):
            continue
        coalition_id = _int_or_none(item.get("id"))
        name = _str_or_none(item.get("name"))
        if coalition_id is None or name is None:
            continue
        membership = memberships.get(coalition_id, {})
        score = _int_or_none(membership.get("score"))
        merged.append(
            Coalition(
                id=coalition_id,
                name=name,
                slug=_str_or_none(item.get("slug")),
                color=_str_or_none(item.get("color")),
                image_url=_str_or_none(item.get("image_url")),
                score=score if score is not None else _int_or_none(item.get("score")),
                rank=_int_or_none(membership.get("rank")),
            )
        )
    return merged


def _team_sort_key(team: dict[str, Any]) -> tuple[datetime, int]:
    moment = (
        parse_iso(team.get("updated_at"))
        or parse_iso(team.get("created_at"))
        or parse_iso(team.get("closed_at"))
        or as_utc(datetime.min)
    )
    return moment, _int_or_none(team.get("id")) or 0


@dataclass(frozen=True)
class _NormalizedProject:
    slug: str
    name: str
    cursus_id: Optional[int]
    retry: Optional[int]
    status: Optional[str]
    team_status: Optional[str]
    registered_at: Optional[datetime]
    end_at: Optional[datetime]
    final_mark: Optional[int]
    validated: Optional[bool]

    @property
    def latest_team_in_progress(self) -> bool:
        return self.team_status == "in_progress"

    @property
    def is_finished(self) -> bool:
        return (
            self.final_mark is not None
            or (self.status or "") in FINISHED_PROJECT_STATUSES
            or (self.team_status or "") in FINISHED_TEAM_STATUSES
            or self.end_at is not None
        )

    @property
    def project_url(self) -> str:
        return PROJECT_URL_TEMPLATE.format(slug=quote(self.slug, safe="/"))


def _normalize_project(item: dict[str, Any]) -> Optional[_NormalizedProject]:
    info = item.get("project")
    if not isinstance(info, dict):
        return None
    name = _str_or_none(info.get("name"))
    slug = _str_or_none(info.get("slug"))
    if name is None or slug is None:
        return None

    teams = [team for team in item.get("teams") or [] if isinstance(team, dict)]
    latest_team = max(teams, key=_team_sort_key) if teams else None
    end_candidates = [parse_iso(item.get("closed_at")), parse_iso(item.get("marked_at"))]
    end_candidates.extend(parse_iso(team.get("closed_at")) for team in teams)
    end_dates = [moment for moment in end_candidates if moment is not None]

    cursus_ids = item.get("cursus_ids")
    status = _str_or_none(item.get("status"))
    team_status = _str_or_none(latest_team.get("status")) if latest_team else None
    validated = item.get("validated?", item.get("validated"))
    return _NormalizedProject(
        slug=slug,
        name=name,
        cursus_id=_int_or_none(cursus_ids[0]) if isinstance(cursus_ids, list) and cursus_ids else None,
        retry=_int_or_none(item.get("occurrence")),
        status=status.lower() if status else None,
        team_status=team_status.lower() if team_status else None,
        registered_at=parse_iso(item.get("created_at")),
        end_at=max(end_dates) if end_dates else None,
        final_mark=_int_or_none(item.get("final_mark")),
        validated=validated if isinstance(validated, bool) else None,
    )


def classify_projects(items: list[Any]) -> tuple[list[Project], list[ActiveProject]]:
    """Split `projects_users` entries into finished and active projects.

    The most recently touched team decides: an `in_progress` latest team
    keeps a project active even if an older attempt was marked. Finished
    projects come newest-closed first, active ones newest-registered first.
    """

    normalized = [
        project
        for project in (_normalize_project(item) for item in items if isinstance(item, dict))
        if project is not None
    ]
    oldest = as_utc(datetime.min)

    finished = [
        Project(
            slug=project.slug,
            name=project.name,
            final_mark=project.final_mark,
            validated=project.validated,
            closed_at=project.end_at,
            retry=project.retry,
            cursus_id=project.cursus_id,
            created_at=project.registered_at,
            project_url=project.project_url,
        )
        for project in normalized
        if not project.latest_team_in_progress and project.is_finished
    ]
    finished.sort(key=lambda project: project.closed_at or oldest, reverse=True)

    active = [
        ActiveProject(
            slug=project.slug,
            name=project.name,
            status=project.status,
            team_status=project.team_status,
            registered_at=project.registered_at,
            cursus_id=project.cursus_id,
            retry=project.retry,
            project_url=project.project_url,
        )
        for project in normalized
        if project.latest_team_in_progress or not project.is_finished
    ]
    active.sort(key=lambda project: project.registered_at or oldest, reverse=True)
    return finished, active


@dataclass
class _ProfileState:
    generation: int = 0
    user: Optional[dict[str, Any]] = None
    coalitions: list[Any] = field(default_factory=list)
    coalition_users: list[Any] = field(default_factory=list)
    projects: list[Any] = field(default_factory=list)
    profile_state: SectionState = SectionState.IDLE
    coalitions_state: SectionState = SectionState.IDLE
    projects_state: SectionState = SectionState.IDLE
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class ProfileSnapshot:
    login: str
    profile: Optional[UserProfile]
    coalitions: list[Coalition]
    finished_projects: list[Project]
    active_projects: list[ActiveProject]
    profile_state: SectionState
    coalitions_state: SectionState
    projects_state: SectionState
    last_updated: Optional[datetime]


class ProfileService:
    """Keeps the last good value of each profile section per login.

    A refresh cycle first loads the basic user record, then coalitions and
    projects in parallel. Each cycle captures a generation number; results
    arriving after a newer cycle started for the same login are dropped.
    """

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
        self._states: dict[str, _ProfileState] = {}

    @staticmethod
    def _normalize_login(login: str) -> str:
        normalized = login.strip().lower()
        if not normalized or "/" in normalized:
            raise ProfileValidationError("login must be a non-empty name without '/'")
        return normalized

    @staticmethod
    def _cache_key(login: str) -> str:
        return f"profile:{login}"

    def _state_for(self, login: str) -> _ProfileState:
        with self._lock:
            state = self._states.get(login)
            if state is None:
                state = self._hydrate(login)
                self._states[login] = state
            return state

    def _hydrate(self, login: str) -> _ProfileState:
        state = _ProfileState()
        cached = self._cache.get(self._cache_key(login))
        if not isinstance(cached, dict) or not isinstance(cached.get("user"), dict):
            return state
        try:
            build_profile(cached["user"])
        except DecodingError:
            logger.warning("Ignoring unusable cached profile for %s", login)
            return state
        state.user = cached["user"]
        state.coalitions = list(cached.get("coalitions") or [])
        state.coalition_users = list(cached.get("coalition_users") or [])
        state.projects = list(cached.get("projects") or [])
        state.last_updated = parse_iso(cached.get("fetched_at"))
        state.profile_state = SectionState.LOADED
        state.coalitions_state = SectionState.LOADED if state.coalitions else SectionState.IDLE
        state.projects_state = SectionState.LOADED if state.projects else SectionState.IDLE
        logger.info("Restored cached profile for %s", login)
        return state

    def _persist(self, login: str, state: _ProfileState) -> None:
        if state.user is None:
            return
        self._cache.set(
            self._cache_key(login),
            {
                "user": state.user,
                "coalitions": state.coalitions,
                "coalition_users": state.coalition_users,
                "projects": state.projects,
                "fetched_at": iso_string(self._clock.now()),
            },
            ttl=self._settings.profile_cache_ttl_seconds,
        )

    def _apply(
        self,
        login: str,
        state: _ProfileState,
        token: int,
        section: str,
        update: Callable[[_ProfileState], None],
    ) -> bool:
        with self._lock:
            if self._states.get(login) is not state or state.generation != token:
                logger.info(
                    "Discarding %s result for %s from superseded cycle %d (current %d)",
                    section,
                    login,
                    token,
                    state.generation,
                )
                return False
            update(state)
            return True

    def _fetch_coalitions(self, login: str) -> tuple[list[Any], list[Any]]:
        coalitions = self._client.request(f"/v2/users/{login}/coalitions")
        coalition_users = self._client.request(f"/v2/users/{login}/coalitions_users")
        if not isinstance(coalitions, list) or not isinstance(coalition_users, list):
            raise DecodingError("coalitions did not return lists")
        return coalitions, coalition_users

    def _fetch_projects(self, login: str) -> list[Any]:
        return self._client.paged_request(f"/v2/users/{login}/projects_users")

    def refresh(self, login: str) -> ProfileSnapshot:
        """Run one full refresh cycle and return the resulting snapshot.

        A failure of the basic record is raised after marking the section
        failed; coalition and project failures only mark their section.
        """

        normalized = self._normalize_login(login)
        state = self._state_for(normalized)
        with self._lock:
            state.generation += 1
            token = state.generation
            state.profile_state = SectionState.LOADING

        try:
            user = self._client.request(f"/v2/users/{normalized}")
            if not isinstance(user, dict):
                raise DecodingError("user endpoint did not return an object")
            build_profile(user)
        except APIError:
            self._apply(normalized, state, token, "profile", _mark_profile_failed)
            raise

        def _set_user(target: _ProfileState) -> None:
            target.user = user
            target.profile_state = SectionState.LOADED
            target.coalitions_state = SectionState.LOADING
            target.projects_state = SectionState.LOADING
            target.last_updated = self._clock.now()

        if not self._apply(normalized, state, token, "profile", _set_user):
            return self.snapshot(normalized)

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="profile-refresh") as pool:
            coalitions_future = pool.submit(self._fetch_coalitions, normalized)
            projects_future = pool.submit(self._fetch_projects, normalized)

            try:
                coalitions, coalition_users = coalitions_future.result()
            except APIError as exc:
                logger.warning("Coalitions refresh for %s failed: %s", normalized, exc)
                self._apply(normalized, state, token, "coalitions", _mark_coalitions_failed)
            else:
                def _set_coalitions(target: _ProfileState) -> None:
                    target.coalitions = coalitions
                    target.coalition_users = coalition_users
                    target.coalitions_state = SectionState.LOADED

                self._apply(normalized, state, token, "coalitions", _set_coalitions)

            try:
                projects = projects_future.result()
            except APIError as exc:
                logger.warning("Projects refresh for %s failed: %s", normalized, exc)
                self._apply(normalized, state, token, "projects", _mark_projects_failed)
            else:
                def _set_projects(target: _ProfileState) -> None:
                    target.projects = projects
                    target.projects_state = SectionState.LOADED

                self._apply(normalized, state, token, "projects", _set_projects)

        with self._lock:
            if self._states.get(normalized) is state and state.generation == token:
                self._persist(normalized, state)
        return self.snapshot(normalized)

    def snapshot(self, login: str) -> ProfileSnapshot:
        normalized = self._normalize_login(login)
        state = self._state_for(normalized)
        with self._lock:
            finished, active = classify_projects(state.projects)
            return ProfileSnapshot(
                login=normalized,
                profile=build_profile(state.user) if state.user is not None else None,
                coalitions=merge_coalitions(state.coalitions, state.coalition_users),
                finished_projects=finished,
                active_projects=active,
                profile_state=state.profile_state,
                coalitions_state=state.coalitions_state,
                projects_state=state.projects_state,
                last_updated=state.last_updated,
            )

    def forget(self, login: str) -> None:
        """Drop in-memory and cached sections; any running cycle becomes stale."""
        normalized = self._normalize_login(login)
        with self._lock:
            previous = self._states.pop(normalized, None)
            if previous is not None:
                previous.generation += 1
            self._cache.remove(self._cache_key(normalized))


def _mark_profile_failed(state: _ProfileState) -> None:
    state.profile_state = SectionState.FAILED


def _mark_coalitions_failed(state: _ProfileState) -> None:
    state.coalitions_state = SectionState.FAILED


def _mark_projects_failed(state: _ProfileState) -> None:
    state.projects_state = SectionState.FAILED


def build_profile_refresher(service: ProfileService, login: str, interval_seconds: float) -> PeriodicTask:
    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be > 0")
    return PeriodicTask(
        name=f"profile-refresh-{login}",
        action=lambda: service.refresh(login),
        delay=interval_seconds,
        run_immediately=True,
    )
