"""HTTP controller for cached profile sections."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from companion.controllers.dependencies import get_profile_service, translate_api_error
from companion.repository.api_client import APIError
from companion.services.profile_service import (
    ProfileService,
    ProfileSnapshot,
    ProfileValidationError,
    SectionState,
)
from companion.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["profile"])


class SectionStatesResponse(BaseModel):
    profile: SectionState
    coalitions: SectionState
    projects: SectionState


class ProfileResponse(BaseModel):
    login: str
    profile: Optional[dict[str, Any]] = None
    coalitions: list[dict[str, Any]]
    finished_projects: list[dict[str, Any]]
    active_projects: list[dict[str, Any]]
    states: SectionStatesResponse
    last_updated: Optional[datetime] = None


def _to_response(snapshot: ProfileSnapshot) -> ProfileResponse:
    return ProfileResponse(
        login=snapshot.login,
        profile=asdict(snapshot.profile) if snapshot.profile is not None else None,
        coalitions=[asdict(item) for item in snapshot.coalitions],
        finished_projects=[asdict(item) for item in snapshot.finished_projects],
        active_projects=[asdict(item) for item in snapshot.active_projects],
        states=SectionStatesResponse(
            profile=snapshot.profile_state,
            coalitions=snapshot.coalitions_state,
            projects=snapshot.projects_state,
        ),
        last_updated=snapshot.last_updated,
    )


@router.get("/users/{login}/profile", response_model=ProfileResponse, status_code=status.HTTP_200_OK)
def get_profile(
    login: str,
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    """Last known sections; never contacts the intranet."""
    try:
        return _to_response(service.snapshot(login))
    except ProfileValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected profile snapshot failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load profile",
        ) from exc


@router.post(
    "/users/{login}/profile/refresh",
    response_model=ProfileResponse,
    status_code=status.HTTP_200_OK,
)
def refresh_profile(
    login: str,
    service: ProfileService = Depends(get_profile_service),
) -> ProfileResponse:
    try:
        return _to_response(service.refresh(login))
    except ProfileValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected profile refresh failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refresh profile",
        ) from exc
