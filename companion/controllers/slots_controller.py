"""HTTP controller for evaluation slots and upcoming evaluations."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from companion.controllers.dependencies import get_slots_service, translate_api_error
from companion.repository.api_client import APIError
from companion.services.slot_merger import describe
from companion.services.slots_service import SlotsService, SlotValidationError
from companion.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["slots"])


class DisplaySlotResponse(BaseModel):
    key: str
    ids: list[int]
    begin_at: datetime
    end_at: datetime
    is_reserved: bool
    reservation_key: Optional[int] = None
    badges: list[str]


class DaySlotsResponse(BaseModel):
    day: date
    anchor: datetime
    slots: list[DisplaySlotResponse]


class CreateSlotRequest(BaseModel):
    begin_at: datetime
    end_at: datetime

    @field_validator("begin_at", "end_at")
    @classmethod
    def require_time_zone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("timestamps must include a UTC offset")
        return value


class SlotRecordResponse(BaseModel):
    id: int = Field(gt=0)
    begin_at: datetime
    end_at: datetime
    reservation_key: Optional[int] = None


class CreateSlotResponse(BaseModel):
    created: list[SlotRecordResponse]


class DeleteSlotsRequest(BaseModel):
    ids: list[int] = Field(min_length=1)

    @field_validator("ids")
    @classmethod
    def validate_ids(cls, value: list[int]) -> list[int]:
        for slot_id in value:
            if slot_id <= 0:
                raise ValueError("ids values must be positive integers")
        return value


class DeleteSlotsResponse(BaseModel):
    deleted: list[int]


class UpcomingEvaluationResponse(BaseModel):
    id: int
    role: str
    begin_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    project_name: Optional[str] = None
    corrected_logins: list[str]
    corrector_login: Optional[str] = None
    duration_minutes: int = Field(ge=0)
    introduction_line: Optional[str] = None
    guidelines_line: Optional[str] = None
    disclaimer_line: Optional[str] = None


class UpcomingEvaluationsResponse(BaseModel):
    evaluations: list[UpcomingEvaluationResponse]


@router.get("/me/slots", response_model=DaySlotsResponse, status_code=status.HTTP_200_OK)
def day_slots(
    day: Optional[date] = Query(default=None),
    service: SlotsService = Depends(get_slots_service),
) -> DaySlotsResponse:
    """Merged free and reserved ranges for one local day (today by default)."""
    try:
        target = day or service.today()
        slots = service.day_view(target)
        return DaySlotsResponse(
            day=target,
            anchor=service.anchor_begin(target),
            slots=[
                DisplaySlotResponse(
                    key=slot.key,
                    ids=list(slot.ids),
                    begin_at=slot.begin,
                    end_at=slot.end,
                    is_reserved=slot.is_reserved,
                    reservation_key=slot.reservation_key,
                    badges=describe(slot),
                )
                for slot in slots
            ],
        )
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected slot listing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load slots",
        ) from exc


@router.post("/me/slots", response_model=CreateSlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(
    payload: CreateSlotRequest,
    service: SlotsService = Depends(get_slots_service),
) -> CreateSlotResponse:
    try:
        created = service.create_slot(payload.begin_at, payload.end_at)
        return CreateSlotResponse(
            created=[
                SlotRecordResponse(
                    id=record.id,
                    begin_at=record.begin,
                    end_at=record.end,
                    reservation_key=record.reservation_key,
                )
                for record in created
            ]
        )
    except SlotValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected slot creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create slot",
        ) from exc


@router.delete("/me/slots", response_model=DeleteSlotsResponse, status_code=status.HTTP_200_OK)
def delete_slots(
    payload: DeleteSlotsRequest,
    service: SlotsService = Depends(get_slots_service),
) -> DeleteSlotsResponse:
    try:
        service.delete_slots(payload.ids)
        return DeleteSlotsResponse(deleted=list(dict.fromkeys(payload.ids)))
    except SlotValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected slot deletion failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete slots",
        ) from exc


@router.get(
    "/me/evaluations/upcoming",
    response_model=UpcomingEvaluationsResponse,
    status_code=status.HTTP_200_OK,
)
def upcoming_evaluations(
    service: SlotsService = Depends(get_slots_service),
) -> UpcomingEvaluationsResponse:
    try:
        evaluations = service.upcoming_evaluations()
        return UpcomingEvaluationsResponse(
            evaluations=[
                UpcomingEvaluationResponse(
                    id=item.id,
                    role=item.role,
                    begin_at=item.begin_at,
                    end_at=item.end_at,
                    project_name=item.project_name,
                    corrected_logins=item.corrected_logins,
                    corrector_login=item.corrector_login,
                    duration_minutes=item.duration_minutes,
                    introduction_line=item.introduction_line,
                    guidelines_line=item.guidelines_line,
                    disclaimer_line=item.disclaimer_line,
                )
                for item in evaluations
            ]
        )
    except APIError as exc:
        raise translate_api_error(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected upcoming evaluations failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load upcoming evaluations",
        ) from exc
