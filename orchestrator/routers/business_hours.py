"""Business hours router - the weekly sending window of an organization."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from orchestrator.core.deps import get_db, get_org_id
from orchestrator.schemas.scheduling import (
    BusinessHoursDay,
    BusinessHoursResponse,
    BusinessHoursUpdate,
)
from orchestrator.services import business_hours_service, org_service
from orchestrator.services.business_hours_service import DayHours, InvalidBusinessHoursError

router = APIRouter(tags=["business-hours"])


def _response(db: Session, org_id: UUID) -> BusinessHoursResponse:
    org = org_service.require_org(db, org_id)
    return BusinessHoursResponse(
        timezone=org.timezone,
        enforce_business_hours=org.enforce_business_hours,
        holiday_country=org.holiday_country,
        days=[
            BusinessHoursDay.model_validate(row)
            for row in business_hours_service.get_business_hours(db, org_id)
        ],
    )


@router.get("", response_model=BusinessHoursResponse)
def get_business_hours(
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    return _response(db, org_id)


@router.put("", response_model=BusinessHoursResponse)
def update_business_hours(
    data: BusinessHoursUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
):
    try:
        business_hours_service.set_business_hours(
            db,
            org_id,
            [
                DayHours(
                    day_of_week=day.day_of_week,
                    is_enabled=day.is_enabled,
                    start_time=day.start_time,
                    end_time=day.end_time,
                )
                for day in data.days
            ],
            tz_name=data.timezone,
            enforce=data.enforce_business_hours,
        )
    except InvalidBusinessHoursError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    return _response(db, org_id)
