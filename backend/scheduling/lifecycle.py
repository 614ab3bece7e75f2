"""Appointment status lifecycle.

    requested -> confirmed -> completed
    requested -> rejected
    requested | confirmed -> cancelled
    confirmed -> no_show        (only once the start time has passed)

Every change, including creation, appends an ``AppointmentTransition`` row.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from backend.core import config
from backend.models.appointment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_REJECTED,
    STATUS_REQUESTED,
    Appointment,
    AppointmentTransition,
)
from backend.scheduling.context import (
    CAPACITY_ADMIN,
    CAPACITY_PATIENT,
    CAPACITY_PROVIDER,
    Principal,
    RequestContext,
    capacities,
)
from backend.scheduling.errors import InvalidTransition, NotAuthorized, SchedulingError
from backend.scheduling.notifications import (
    EVENT_CANCELLED,
    EVENT_CONFIRMED,
    AppointmentEvent,
    NotificationDispatcher,
    dispatch_safely,
)
from backend.scheduling.repository import AppointmentQuery, AppointmentRepository

logger = logging.getLogger(__name__)

TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {
    (STATUS_REQUESTED, STATUS_CONFIRMED): frozenset({CAPACITY_PROVIDER, CAPACITY_ADMIN}),
    (STATUS_REQUESTED, STATUS_REJECTED): frozenset({CAPACITY_PROVIDER, CAPACITY_ADMIN}),
    (STATUS_CONFIRMED, STATUS_COMPLETED): frozenset({CAPACITY_PROVIDER, CAPACITY_ADMIN}),
    (STATUS_REQUESTED, STATUS_CANCELLED): frozenset({CAPACITY_PATIENT, CAPACITY_PROVIDER}),
    (STATUS_CONFIRMED, STATUS_CANCELLED): frozenset({CAPACITY_PATIENT, CAPACITY_PROVIDER}),
    (STATUS_CONFIRMED, STATUS_NO_SHOW): frozenset({CAPACITY_PROVIDER, CAPACITY_ADMIN}),
}

NOTIFIED_STATUSES = {
    STATUS_CONFIRMED: EVENT_CONFIRMED,
    STATUS_CANCELLED: EVENT_CANCELLED,
}

LATE_CANCELLATION_NOTE = 'late_cancellation'


def record_transition(
    db: Session,
    appointment: Appointment,
    from_status: str | None,
    to_status: str,
    principal: Principal,
    occurred_at: datetime,
    note: str | None = None,
) -> AppointmentTransition:
    transition = AppointmentTransition(
        appointment=appointment,
        actor_id=principal.user_id,
        actor_role=principal.role,
        from_status=from_status,
        to_status=to_status,
        occurred_at=occurred_at,
        note=note,
    )
    db.add(transition)
    return transition


def appointment_event(kind: str, appointment: Appointment, occurred_at: datetime) -> AppointmentEvent:
    return AppointmentEvent(
        kind=kind,
        appointment_id=appointment.id,
        provider_id=appointment.provider_id,
        patient_id=appointment.patient_id,
        start_time=appointment.interval.start,
        occurred_at=occurred_at,
    )


def cancellation_cutoff(appointment: Appointment) -> timedelta:
    hospital = appointment.provider.hospital if appointment.provider is not None else None
    minutes = None
    if hospital is not None:
        minutes = hospital.cancellation_cutoff_minutes
    if minutes is None:
        minutes = config.DEFAULT_CANCELLATION_CUTOFF_MINUTES
    return timedelta(minutes=minutes)


def is_late_cancellation(appointment: Appointment, now: datetime) -> bool:
    return appointment.interval.start - now < cancellation_cutoff(appointment)


class StatusLifecycleController:
    def __init__(self, db: Session, notifier: NotificationDispatcher | None = None):
        self.db = db
        self.notifier = notifier

    def confirm(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        return self.transition(ctx, appointment_id, STATUS_CONFIRMED)

    def reject(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        return self.transition(ctx, appointment_id, STATUS_REJECTED)

    def complete(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        return self.transition(ctx, appointment_id, STATUS_COMPLETED)

    def mark_no_show(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        return self.transition(ctx, appointment_id, STATUS_NO_SHOW)

    def cancel(self, ctx: RequestContext, appointment_id: int) -> Appointment:
        return self.transition(ctx, appointment_id, STATUS_CANCELLED)

    def transition(self, ctx: RequestContext, appointment_id: int, target: str) -> Appointment:
        """Move an appointment to ``target`` or raise, leaving it unchanged."""
        try:
            appointment = self._load_authorized(ctx, appointment_id, for_update=True)
            current = appointment.status
            allowed = TRANSITIONS.get((current, target))
            if allowed is None:
                raise InvalidTransition(current, target)
            if not allowed & capacities(ctx.principal, appointment.provider, appointment.patient_id):
                raise NotAuthorized()

            note = None
            if target == STATUS_NO_SHOW and appointment.interval.start > ctx.now:
                raise InvalidTransition(current, target, 'The appointment has not started yet.')
            if target == STATUS_CANCELLED and is_late_cancellation(appointment, ctx.now):
                appointment.late_cancellation = True
                note = LATE_CANCELLATION_NOTE
                logger.warning('Appointment %s cancelled inside the hospital cutoff.', appointment.id)

            appointment.status = target
            record_transition(self.db, appointment, current, target, ctx.principal, ctx.now, note)
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise InvalidTransition(current, target, 'The appointment changed concurrently.') from exc
        except (SchedulingError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info('Appointment %s moved %s -> %s by user %s', appointment.id, current, target, ctx.principal.user_id)

        kind = NOTIFIED_STATUSES.get(target)
        if kind is not None:
            dispatch_safely(self.notifier, appointment_event(kind, appointment, ctx.now))
        return appointment

    def history(self, ctx: RequestContext, appointment_id: int) -> list[AppointmentTransition]:
        self._load_authorized(ctx, appointment_id)
        return AppointmentRepository.transitions(self.db, appointment_id)

    def list_appointments(self, ctx: RequestContext, query: AppointmentQuery) -> list[Appointment]:
        return AppointmentRepository.list_visible(self.db, ctx.principal, query, ctx.now)

    def _load_authorized(self, ctx: RequestContext, appointment_id: int, for_update: bool = False) -> Appointment:
        # A missing appointment and a foreign one look the same to the caller.
        appointment = AppointmentRepository.get(self.db, appointment_id, for_update=for_update)
        if appointment is None:
            raise NotAuthorized()
        if not capacities(ctx.principal, appointment.provider, appointment.patient_id):
            raise NotAuthorized()
        return appointment
