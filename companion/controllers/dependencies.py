"""Shared FastAPI dependency providers and upstream error translation."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from companion.repository.api_client import (
    APIError,
    DecodingError,
    HTTPStatusError,
    RateLimitedError,
    TransportError,
    UnauthorizedError,
)
from companion.services.auth_service import AuthService
from companion.services.campus_service import CampusLoaders
from companion.services.location_service import LocationStatsService
from companion.services.profile_service import ProfileService
from companion.services.search_service import SearchService
from companion.services.slots_service import SlotsService
from companion.services.ttl_cache import TTLCache


def _service(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    return _service(request, "auth_service", "Auth service")


def get_cache(request: Request) -> TTLCache:
    return _service(request, "cache", "Cache")


def get_location_service(request: Request) -> LocationStatsService:
    return _service(request, "location_service", "Location service")


def get_slots_service(request: Request) -> SlotsService:
    return _service(request, "slots_service", "Slots service")


def get_profile_service(request: Request) -> ProfileService:
    return _service(request, "profile_service", "Profile service")


def get_campus_loaders(request: Request) -> CampusLoaders:
    return _service(request, "campus_loaders", "Campus service")


def get_search_service(request: Request) -> SearchService:
    return _service(request, "search_service", "Search service")


def translate_api_error(exc: APIError) -> HTTPException:
    """Map an upstream failure onto the status code the local API reports."""
    if isinstance(exc, UnauthorizedError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, RateLimitedError):
        headers = None
        if exc.retry_after is not None:
            headers = {"Retry-After": str(int(exc.retry_after))}
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers=headers,
        )
    if isinstance(exc, HTTPStatusError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)
    if isinstance(exc, DecodingError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="invalid server response",
        )
    if isinstance(exc, TransportError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=exc.user_message,
        )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
