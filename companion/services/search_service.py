"""Login search over the intranet user directory."""

from __future__ import annotations

from typing import Any, Optional

from companion.domain.models import UserSummary
from companion.repository.api_client import DecodingError, IntraAPIClient
from companion.utils.config import Settings, get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)

MAX_SEARCH_PAGE_SIZE = 100


class SearchValidationError(ValueError):
    """Raised for an unusable result limit."""


def _primary_campus_id(payload: dict[str, Any]) -> Optional[int]:
    for link in payload.get("campus_users") or []:
        if isinstance(link, dict) and link.get("is_primary") is True:
            campus_id = link.get("campus_id")
            if isinstance(campus_id, int) and not isinstance(campus_id, bool):
                return campus_id
    campus = payload.get("campus")
    if isinstance(campus, list) and campus and isinstance(campus[0], dict):
        campus_id = campus[0].get("id")
        if isinstance(campus_id, int) and not isinstance(campus_id, bool):
            return campus_id
    return None


def build_user_summary(payload: Any) -> Optional[UserSummary]:
    if not isinstance(payload, dict):
        return None
    user_id = payload.get("id")
    login = payload.get("login")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        return None
    if not isinstance(login, str) or not login:
        return None
    image = payload.get("image")
    image_url = image.get("link") if isinstance(image, dict) else None
    display_name = payload.get("displayname")
    pool_year = payload.get("pool_year")
    return UserSummary(
        id=user_id,
        login=login,
        display_name=display_name if isinstance(display_name, str) and display_name else login,
        image_url=image_url if isinstance(image_url, str) and image_url else None,
        primary_campus_id=_primary_campus_id(payload),
        pool_year=pool_year if isinstance(pool_year, str) and pool_year else None,
    )


class SearchService:
    def __init__(self, client: IntraAPIClient, settings: Optional[Settings] = None) -> None:
        self._client = client
        self._settings = settings or get_settings()

    def search_users(
        self,
        query: str,
        limit: Optional[int] = None,
        campus_id: Optional[int] = None,
    ) -> list[UserSummary]:
        """Users whose login starts with `query`.

        Queries shorter than the minimum length return no results without a
        request. With `campus_id`, members of that campus are listed first;
        each group is ordered by login, ignoring case.
        """

        limit = self._settings.search_page_size if limit is None else limit
        if not 1 <= limit <= MAX_SEARCH_PAGE_SIZE:
            raise SearchValidationError(f"limit must be between 1 and {MAX_SEARCH_PAGE_SIZE}")
        term = query.strip()
        if len(term) < self._settings.search_min_query_length:
            return []

        payload = self._client.request(
            "/v2/users",
            query={"search[login]": term, "page[size]": limit},
        )
        if not isinstance(payload, list):
            raise DecodingError("/v2/users did not return a list")
        results = [summary for summary in map(build_user_summary, payload) if summary is not None]
        if campus_id is not None:
            results.sort(key=lambda user: (user.primary_campus_id != campus_id, user.login.casefold()))
        logger.debug("Search for %r returned %d user(s)", term, len(results))
        return results
