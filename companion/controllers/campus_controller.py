"""HTTP controller for the campus dashboard."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, Field

from companion.controllers.dependencies import get_campus_loaders, translate_api_error
from companion.repository.api_client import APIError
from companion.services.campus_service import CampusLoaders, CampusSnapshot
from companion.services.profile_service import SectionState
from companion.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["campus"])


class CampusResponse(BaseModel):
    campus_id: int
    state: SectionState
    info: Optional[dict[str, Any]] = None
    active_users_count: Optional[int] = Field(default=None, ge=0)
    upcoming_events: list[dict[str, Any]] = Field(default_factory=list)
    last_updated: Optional[datetime] = None


class CampusCacheClearedResponse(BaseModel):
    campus_id: int
    cleared: bool


def _to_response(snapshot: CampusSnapshot) -> CampusResponse:
    dashboard = snapshot.dashboard
    if dashboard is None:
        return CampusResponse(campus_id=snapshot.campus_id, state=snapshot.state)
    return CampusResponse(
        campus_id=snapshot.campus_id,
        state=snapshot.state,
        info=asdict(dashboard.info),
        active_users_count=dashboard.active_users_count,
        upcoming_events=[asdict(event) for event in dashboard.upcoming_events],
        last_updated=snapshot.last_updated,
    )


@router.get("/campus/{campus_id}", response_model=CampusResponse, status_code=status.HTTP_200_OK)
def get_campus(
    campus_id: int = Path(gt=0),
    loaders: CampusLoaders = Depends(get_campus_loaders),
) -> CampusResponse:
    """Saved dashboard while it is fresh; the first call loads it."""
    loader = loaders.loader_for(campus_id)
    try:
        snapshot = loader.snapshot()
        if snapshot.state is SectionState.IDLE:
            snapshot = loader.prime()
        return _to_response(snapshot)
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected campus dashboard failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load campus dashboard",
        ) from exc


@router.post(
    "/campus/{campus_id}/refresh",
    response_model=CampusResponse,
    status_code=status.HTTP_200_OK,
)
def refresh_campus(
    campus_id: int = Path(gt=0),
    loaders: CampusLoaders = Depends(get_campus_loaders),
) -> CampusResponse:
    try:
        return _to_response(loaders.loader_for(campus_id).refresh_now())
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected campus refresh failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refresh campus dashboard",
        ) from exc


@router.delete(
    "/campus/{campus_id}/cache",
    response_model=CampusCacheClearedResponse,
    status_code=status.HTTP_200_OK,
)
def clear_campus_cache(
    campus_id: int = Path(gt=0),
    loaders: CampusLoaders = Depends(get_campus_loaders),
) -> CampusCacheClearedResponse:
    try:
        loaders.loader_for(campus_id).clear_cache()
        return CampusCacheClearedResponse(campus_id=campus_id, cleared=True)
    except OSError as exc:
        logger.exception("Campus cache could not be removed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
