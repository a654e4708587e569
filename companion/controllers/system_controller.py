"""Liveness and cache administration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from companion.controllers.dependencies import get_auth_service, get_cache
from companion.services.auth_service import AuthService
from companion.services.ttl_cache import CachePersistenceError, TTLCache
from companion.utils.config import get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["system"])


class HealthResponse(BaseModel):
    status: str
    version: str
    authenticated: bool
    cache_entries: int = Field(ge=0)


class CacheClearedResponse(BaseModel):
    cleared: bool


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
def health(
    cache: TTLCache = Depends(get_cache),
    auth_service: AuthService = Depends(get_auth_service),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        authenticated=auth_service.is_authenticated,
        cache_entries=len(cache),
    )


@router.delete("/cache", response_model=CacheClearedResponse, status_code=status.HTTP_200_OK)
def clear_cache(cache: TTLCache = Depends(get_cache)) -> CacheClearedResponse:
    try:
        cache.clear()
        return CacheClearedResponse(cleared=True)
    except CachePersistenceError as exc:
        logger.exception("Cache clear could not be persisted")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
