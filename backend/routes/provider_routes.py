from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_principal, get_request_context
from backend.database import get_db
from backend.models.provider import Blackout, Provider
from backend.routes.http_errors import database_unavailable, to_http_exception
from backend.scheduling.context import RequestContext
from backend.scheduling.errors import SchedulingError
from backend.scheduling.providers import ProviderDirectory
from backend.scheduling.timeslots import Interval, ensure_utc

router = APIRouter(tags=['providers'])

MINUTES_PER_DAY = 24 * 60


class CreateProviderRequest(BaseModel):
    name: str
    slot_minutes: int = Field(default=30, gt=0, le=MINUTES_PER_DAY)
    timezone: str = 'UTC'
    user_id: int | None = None
    specialty: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Provider name is required.')
        return normalized

    @field_validator('slot_minutes')
    @classmethod
    def validate_slot_minutes(cls, value: int) -> int:
        if MINUTES_PER_DAY % value != 0:
            raise ValueError('Slot length must divide a day evenly (e.g. 15, 30 or 60 minutes).')
        return value

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        normalized = value.strip()
        if normalized.upper() == 'UTC':
            return 'UTC'
        try:
            ZoneInfo(normalized)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError('Unknown timezone.') from exc
        return normalized


class WorkingHoursWindow(BaseModel):
    weekday: int = Field(ge=0, le=6)
    start_time: time
    end_time: time

    @model_validator(mode='after')
    def validate_order(self) -> 'WorkingHoursWindow':
        if self.end_time <= self.start_time:
            raise ValueError('Working hours must end after they start.')
        return self


class SetWorkingHoursRequest(BaseModel):
    windows: list[WorkingHoursWindow]


class CreateBlackoutRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: str | None = None

    @model_validator(mode='after')
    def validate_order(self) -> 'CreateBlackoutRequest':
        if ensure_utc(self.end_time) <= ensure_utc(self.start_time):
            raise ValueError('Blackout must end after it starts.')
        return self


class WorkingHoursResponse(BaseModel):
    weekday: int
    start_time: time
    end_time: time


class ProviderResponse(BaseModel):
    id: int
    hospital_id: int
    user_id: int | None = None
    name: str
    specialty: str | None = None
    slot_minutes: int
    timezone: str
    working_hours: list[WorkingHoursResponse]


class BlackoutResponse(BaseModel):
    id: int
    provider_id: int
    start_time: datetime
    end_time: datetime
    reason: str | None = None


def to_provider_response(provider: Provider) -> ProviderResponse:
    return ProviderResponse(
        id=provider.id,
        hospital_id=provider.hospital_id,
        user_id=provider.user_id,
        name=provider.name,
        specialty=provider.specialty,
        slot_minutes=provider.slot_minutes,
        timezone=provider.timezone,
        working_hours=[
            WorkingHoursResponse(weekday=hours.weekday, start_time=hours.start_time, end_time=hours.end_time)
            for hours in provider.working_hours
        ],
    )


def to_blackout_response(blackout: Blackout) -> BlackoutResponse:
    return BlackoutResponse(
        id=blackout.id,
        provider_id=blackout.provider_id,
        start_time=ensure_utc(blackout.start_time),
        end_time=ensure_utc(blackout.end_time),
        reason=blackout.reason,
    )


@router.post('', response_model=ProviderResponse, status_code=status.HTTP_201_CREATED)
def create_provider(
    data: CreateProviderRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        provider = ProviderDirectory(db).create(
            ctx,
            name=data.name,
            slot_minutes=data.slot_minutes,
            timezone=data.timezone,
            user_id=data.user_id,
            specialty=data.specialty,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_provider_response(provider)


@router.get('/{provider_id}', response_model=ProviderResponse, dependencies=[Depends(get_current_principal)])
def get_provider(provider_id: int, db: Session = Depends(get_db)):
    try:
        provider = ProviderDirectory(db).get(provider_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_provider_response(provider)


@router.put('/{provider_id}/working-hours', response_model=ProviderResponse)
def set_working_hours(
    provider_id: int,
    data: SetWorkingHoursRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    windows = [(window.weekday, window.start_time, window.end_time) for window in data.windows]
    try:
        provider = ProviderDirectory(db).set_working_hours(ctx, provider_id, windows)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_provider_response(provider)


@router.post(
    '/{provider_id}/blackouts',
    response_model=BlackoutResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_blackout(
    provider_id: int,
    data: CreateBlackoutRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        blackout = ProviderDirectory(db).add_blackout(
            ctx,
            provider_id,
            Interval(data.start_time, data.end_time),
            reason=data.reason,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_blackout_response(blackout)


@router.delete('/{provider_id}/blackouts/{blackout_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_blackout(
    provider_id: int,
    blackout_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        ProviderDirectory(db).remove_blackout(ctx, provider_id, blackout_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
