"""HTTP controller for daily log time and current workstation."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from companion.controllers.dependencies import get_location_service, translate_api_error
from companion.repository.api_client import APIError
from companion.services.interval_aggregator import AggregationWindowError, format_hours
from companion.services.location_service import LocationStatsService, LogTimeValidationError
from companion.utils.config import get_settings
from companion.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["logtime"])


class DailyBucketResponse(BaseModel):
    day: date
    hours: float = Field(ge=0.0)
    label: str


class LogTimeResponse(BaseModel):
    login: str
    source: str
    buckets: list[DailyBucketResponse]
    total_hours: float = Field(ge=0.0)
    average_hours: float = Field(ge=0.0)
    total_label: str


class HostResponse(BaseModel):
    login: str
    host: Optional[str] = None


@router.get(
    "/users/{login}/logtime",
    response_model=LogTimeResponse,
    status_code=status.HTTP_200_OK,
)
def user_logtime(
    login: str,
    days: int = Query(default=settings.logtime_default_days, ge=1, le=settings.logtime_max_days),
    service: LocationStatsService = Depends(get_location_service),
) -> LogTimeResponse:
    try:
        result = service.daily_hours(login, days)
        return LogTimeResponse(
            login=login.strip().lower(),
            source=result.source,
            buckets=[
                DailyBucketResponse(
                    day=bucket.day.date(),
                    hours=bucket.hours,
                    label=format_hours(bucket.hours),
                )
                for bucket in result.buckets
            ],
            total_hours=result.total_hours,
            average_hours=result.average_hours,
            total_label=format_hours(result.total_hours),
        )
    except (LogTimeValidationError, AggregationWindowError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected log time failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute log time",
        ) from exc


@router.get(
    "/users/{login}/host",
    response_model=HostResponse,
    status_code=status.HTTP_200_OK,
)
def user_host(
    login: str,
    service: LocationStatsService = Depends(get_location_service),
) -> HostResponse:
    try:
        return HostResponse(login=login.strip().lower(), host=service.current_host(login))
    except LogTimeValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected host lookup failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to look up current host",
        ) from exc
