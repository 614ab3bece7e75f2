"""Parameterized queries per entity.

Everything that reads or writes scheduling rows goes through these helpers, so
filters are always built from typed arguments and never by string assembly.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from backend.models.appointment import (
    ACTIVE_STATUSES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_REJECTED,
    STATUS_REQUESTED,
    Appointment,
    AppointmentTransition,
)
from backend.models.provider import Blackout, Provider, WorkingHours
from backend.models.queue_entry import QUEUE_SERVING, QUEUE_WAITING, QueueEntry
from backend.models.user import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, User
from backend.scheduling.context import Principal
from backend.scheduling.timeslots import Interval

AppointmentTab = Literal['upcoming', 'pending', 'completed', 'cancelled', 'rejected', 'all']


class AppointmentQuery(BaseModel):
    """Validated filter for appointment listings."""

    tab: AppointmentTab = 'upcoming'
    on_date: date | None = None
    provider_id: int | None = Field(default=None, gt=0)
    limit: int = Field(default=100, ge=1, le=500)

    @field_validator('tab', mode='before')
    @classmethod
    def normalize_tab(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ProviderRepository:
    @staticmethod
    def get(db: Session, provider_id: int) -> Provider | None:
        return db.query(Provider).filter(Provider.id == provider_id).first()

    @staticmethod
    def create(db: Session, **fields) -> Provider:
        provider = Provider(**fields)
        db.add(provider)
        db.flush()
        return provider

    @staticmethod
    def replace_working_hours(db: Session, provider: Provider, windows: list[tuple[int, time, time]]) -> None:
        provider.working_hours.clear()
        db.flush()
        for weekday, start, end in windows:
            provider.working_hours.append(WorkingHours(weekday=weekday, start_time=start, end_time=end))
        db.flush()


class BlackoutRepository:
    @staticmethod
    def in_window(db: Session, provider_id: int, window: Interval) -> list[Blackout]:
        return db.query(Blackout).filter(
            Blackout.provider_id == provider_id,
            Blackout.start_time < window.end,
            Blackout.end_time > window.start,
        ).order_by(Blackout.start_time.asc()).all()

    @staticmethod
    def get(db: Session, provider_id: int, blackout_id: int) -> Blackout | None:
        return db.query(Blackout).filter(
            Blackout.id == blackout_id,
            Blackout.provider_id == provider_id,
        ).first()

    @staticmethod
    def add(db: Session, provider_id: int, interval: Interval, reason: str | None) -> Blackout:
        blackout = Blackout(
            provider_id=provider_id,
            start_time=interval.start,
            end_time=interval.end,
            reason=reason,
        )
        db.add(blackout)
        db.flush()
        return blackout


class AppointmentRepository:
    @staticmethod
    def get(db: Session, appointment_id: int, for_update: bool = False) -> Appointment | None:
        query = db.query(Appointment).filter(Appointment.id == appointment_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def active_overlapping(
        db: Session,
        provider_id: int,
        window: Interval,
        exclude_id: int | None = None,
    ) -> list[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_time < window.end,
            Appointment.end_time > window.start,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.start_time.asc()).all()

    @staticmethod
    def transitions(db: Session, appointment_id: int) -> list[AppointmentTransition]:
        return db.query(AppointmentTransition).filter(
            AppointmentTransition.appointment_id == appointment_id,
        ).order_by(AppointmentTransition.id.asc()).all()

    @staticmethod
    def list_visible(db: Session, principal: Principal, query: AppointmentQuery, now: datetime) -> list[Appointment]:
        statement = db.query(Appointment)

        if principal.role == ROLE_PATIENT:
            statement = statement.filter(Appointment.patient_id == principal.user_id)
        elif principal.role == ROLE_DOCTOR:
            statement = statement.join(Provider, Provider.id == Appointment.provider_id).filter(
                Provider.user_id == principal.user_id,
            )
        elif principal.role == ROLE_ADMIN and principal.hospital_id is not None:
            statement = statement.filter(Appointment.hospital_id == principal.hospital_id)
        else:
            return []

        if query.provider_id is not None:
            statement = statement.filter(Appointment.provider_id == query.provider_id)

        if query.tab == 'upcoming':
            statement = statement.filter(
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.end_time > now,
            )
        elif query.tab == 'pending':
            statement = statement.filter(Appointment.status == STATUS_REQUESTED)
        elif query.tab == 'completed':
            statement = statement.filter(Appointment.status == STATUS_COMPLETED)
        elif query.tab == 'cancelled':
            statement = statement.filter(Appointment.status == STATUS_CANCELLED)
        elif query.tab == 'rejected':
            statement = statement.filter(Appointment.status == STATUS_REJECTED)

        if query.on_date is not None:
            day_start = datetime.combine(query.on_date, time.min, tzinfo=timezone.utc)
            statement = statement.filter(
                Appointment.start_time >= day_start,
                Appointment.start_time < day_start + timedelta(days=1),
            )

        return statement.order_by(Appointment.start_time.asc()).limit(query.limit).all()


class QueueRepository:
    @staticmethod
    def get(db: Session, entry_id: int, for_update: bool = False) -> QueueEntry | None:
        query = db.query(QueueEntry).filter(QueueEntry.id == entry_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    @staticmethod
    def serving(db: Session, provider_id: int) -> QueueEntry | None:
        return db.query(QueueEntry).filter(
            QueueEntry.provider_id == provider_id,
            QueueEntry.status == QUEUE_SERVING,
        ).first()

    @staticmethod
    def waiting(db: Session, provider_id: int, service_date: date) -> list[QueueEntry]:
        return QueueRepository._waiting_query(db, provider_id, service_date).all()

    @staticmethod
    def head(db: Session, provider_id: int, service_date: date) -> QueueEntry | None:
        return QueueRepository._waiting_query(db, provider_id, service_date).with_for_update().first()

    @staticmethod
    def _waiting_query(db: Session, provider_id: int, service_date: date):
        return db.query(QueueEntry).filter(
            QueueEntry.provider_id == provider_id,
            QueueEntry.service_date == service_date,
            QueueEntry.status == QUEUE_WAITING,
        ).order_by(
            QueueEntry.priority.desc(),
            QueueEntry.arrived_at.asc(),
            QueueEntry.id.asc(),
        )


class UserRepository:
    @staticmethod
    def get(db: Session, user_id: int) -> User | None:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_by_email(db: Session, email: str) -> User | None:
        return db.query(User).filter(User.email == email).first()

    @staticmethod
    def patient_by_national_id(db: Session, national_id: str) -> User | None:
        return db.query(User).filter(
            User.national_id == national_id,
            User.role == ROLE_PATIENT,
        ).first()
