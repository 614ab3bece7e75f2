from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal
from backend.core import config
from backend.database import get_db
from backend.routes.http_errors import database_unavailable, to_http_exception
from backend.scheduling.booking import BookingEngine
from backend.scheduling.errors import SchedulingError

router = APIRouter(tags=['availability'], dependencies=[Depends(get_current_principal)])


class IntervalResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    duration_minutes: int


def validate_date_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='end_date must not be before start_date.',
        )

    if end_date - start_date >= timedelta(days=config.AVAILABILITY_MAX_RANGE_DAYS):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Availability can be requested for at most {config.AVAILABILITY_MAX_RANGE_DAYS} days.',
        )


@router.get('/providers/{provider_id}', response_model=list[IntervalResponse])
def get_availability(
    provider_id: int,
    start_date: date = Query(...),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
):
    end_date = end_date or start_date
    validate_date_range(start_date, end_date)

    try:
        intervals = BookingEngine(db).get_availability(provider_id, start_date, end_date)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [
        IntervalResponse(
            start_time=interval.start,
            end_time=interval.end,
            duration_minutes=int(interval.duration.total_seconds() // 60),
        )
        for interval in intervals
    ]
