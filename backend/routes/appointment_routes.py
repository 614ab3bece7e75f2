from datetime import date, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_request_context
from backend.database import get_db
from backend.models.appointment import (
    APPOINTMENT_TYPES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_REJECTED,
    Appointment,
    AppointmentTransition,
)
from backend.models.user import ROLE_PATIENT
from backend.routes.http_errors import database_unavailable, to_http_exception
from backend.scheduling.booking import BookingEngine
from backend.scheduling.context import RequestContext
from backend.scheduling.errors import SchedulingError
from backend.scheduling.lifecycle import StatusLifecycleController
from backend.scheduling.notifications import BackgroundTaskDispatcher, LoggingNotificationDispatcher
from backend.scheduling.repository import AppointmentQuery
from backend.scheduling.timeslots import ensure_utc

router = APIRouter(tags=['appointments'])

MAX_DESCRIPTION_LENGTH = 600
MAX_TITLE_LENGTH = 120


class CreateAppointmentRequest(BaseModel):
    provider_id: int
    patient_id: int | None = None
    start_time: datetime
    duration_minutes: int
    title: str | None = None
    appointment_type: str | None = None
    description: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_TITLE_LENGTH:
            raise ValueError(f'Title must be {MAX_TITLE_LENGTH} characters or fewer.')

        return normalized

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip().lower().replace('-', '_')
        if normalized not in APPOINTMENT_TYPES:
            raise ValueError('Invalid appointment type.')
        return normalized

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_DESCRIPTION_LENGTH:
            raise ValueError(f'Description must be {MAX_DESCRIPTION_LENGTH} characters or fewer.')

        return normalized


class RescheduleAppointmentRequest(BaseModel):
    start_time: datetime


class AppointmentResponse(BaseModel):
    id: int
    provider_id: int
    patient_id: int
    hospital_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    title: str | None = None
    appointment_type: str | None = None
    description: str | None = None
    late_cancellation: bool
    rescheduled_from_id: int | None = None
    created_at: datetime
    version: int


class TransitionResponse(BaseModel):
    id: int
    actor_id: int
    actor_role: str
    from_status: str | None = None
    to_status: str
    occurred_at: datetime
    note: str | None = None


def get_notifier(background_tasks: BackgroundTasks) -> BackgroundTaskDispatcher:
    return BackgroundTaskDispatcher(background_tasks, LoggingNotificationDispatcher())


def to_appointment_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        provider_id=appointment.provider_id,
        patient_id=appointment.patient_id,
        hospital_id=appointment.hospital_id,
        start_time=ensure_utc(appointment.start_time),
        end_time=ensure_utc(appointment.end_time),
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        title=appointment.title,
        appointment_type=appointment.appointment_type,
        description=appointment.description,
        late_cancellation=bool(appointment.late_cancellation),
        rescheduled_from_id=appointment.rescheduled_from_id,
        created_at=ensure_utc(appointment.created_at),
        version=appointment.version,
    )


def to_transition_response(transition: AppointmentTransition) -> TransitionResponse:
    return TransitionResponse(
        id=transition.id,
        actor_id=transition.actor_id,
        actor_role=transition.actor_role,
        from_status=transition.from_status,
        to_status=transition.to_status,
        occurred_at=ensure_utc(transition.occurred_at),
        note=transition.note,
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    ctx: RequestContext = Depends(get_request_context),
    notifier: BackgroundTaskDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    patient_id = data.patient_id
    if patient_id is None:
        if ctx.principal.role != ROLE_PATIENT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='patient_id is required when booking on behalf of a patient.',
            )
        patient_id = ctx.principal.user_id

    try:
        appointment = BookingEngine(db, notifier=notifier).book(
            ctx,
            provider_id=data.provider_id,
            patient_id=patient_id,
            start=data.start_time,
            duration_minutes=data.duration_minutes,
            title=data.title,
            appointment_type=data.appointment_type,
            description=data.description,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_appointment_response(appointment)


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    tab: str = Query(default='upcoming'),
    on_date: date | None = Query(default=None),
    provider_id: int | None = Query(default=None),
    limit: int = Query(default=100),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        query = AppointmentQuery(tab=tab, on_date=on_date, provider_id=provider_id, limit=limit)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid appointment filter.',
        ) from exc

    try:
        appointments = StatusLifecycleController(db).list_appointments(ctx, query)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [to_appointment_response(appointment) for appointment in appointments]


@router.get('/{appointment_id}/history', response_model=list[TransitionResponse])
def get_appointment_history(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    try:
        transitions = StatusLifecycleController(db).history(ctx, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [to_transition_response(transition) for transition in transitions]


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    ctx: RequestContext = Depends(get_request_context),
    notifier: BackgroundTaskDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    try:
        appointment = BookingEngine(db, notifier=notifier).reschedule(ctx, appointment_id, data.start_time)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_appointment_response(appointment)


def transition_appointment(
    appointment_id: int,
    target: str,
    ctx: RequestContext,
    notifier: BackgroundTaskDispatcher,
    db: Session,
) -> AppointmentResponse:
    try:
        appointment = StatusLifecycleController(db, notifier=notifier).transition(ctx, appointment_id, target)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return to_appointment_response(appointment)


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    notifier: BackgroundTaskDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    return transition_appointment(appointment_id, STATUS_CONFIRMED, ctx, notifier, db)


@router.post('/{appointment_id}/reject', response_model=AppointmentResponse)
def reject_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    notifier: BackgroundTaskDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    return transition_appointment(appointment_id, STATUS_REJECTED, ctx, notifier, db)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    notifier: BackgroundTaskDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    return transition_appointment(appointment_id, STATUS_COMPLETED, ctx, notifier, db)


@router.post('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_appointment_no_show(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    notifier: BackgroundTaskDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    return transition_appointment(appointment_id, STATUS_NO_SHOW, ctx, notifier, db)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(get_request_context),
    notifier: BackgroundTaskDispatcher = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    return transition_appointment(appointment_id, STATUS_CANCELLED, ctx, notifier, db)
