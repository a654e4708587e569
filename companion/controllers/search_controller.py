"""HTTP controller for user search."""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from companion.controllers.dependencies import get_search_service, translate_api_error
from companion.repository.api_client import APIError
from companion.services.search_service import MAX_SEARCH_PAGE_SIZE, SearchService, SearchValidationError
from companion.utils.config import get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["search"])


class UserSummaryResponse(BaseModel):
    id: int
    login: str
    display_name: str
    image_url: Optional[str] = None
    primary_campus_id: Optional[int] = None
    pool_year: Optional[str] = None


class SearchResponse(BaseModel):
    query: str
    users: list[UserSummaryResponse]


@router.get("/search/users", response_model=SearchResponse, status_code=status.HTTP_200_OK)
def search_users(
    q: str = Query(max_length=64),
    limit: int = Query(default=settings.search_page_size, ge=1, le=MAX_SEARCH_PAGE_SIZE),
    campus_id: Optional[int] = Query(default=None, gt=0),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    try:
        users = service.search_users(q, limit=limit, campus_id=campus_id)
        return SearchResponse(
            query=q.strip(),
            users=[UserSummaryResponse(**asdict(user)) for user in users],
        )
    except SearchValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected user search failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search users",
        ) from exc
