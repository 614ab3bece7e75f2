"""Appointment and appointment audit model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, event
from sqlalchemy.orm import relationship

from backend.database import Base
from backend.models.provider import Provider
from backend.scheduling.timeslots import Interval

STATUS_REQUESTED = 'requested'
STATUS_CONFIRMED = 'confirmed'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_NO_SHOW = 'no_show'
STATUS_REJECTED = 'rejected'

ACTIVE_STATUSES = (STATUS_REQUESTED, STATUS_CONFIRMED)
APPOINTMENT_TYPES = ('in_person', 'video', 'phone')


class Appointment(Base):
    """Represents one scheduled encounter. Never deleted, only transitioned."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"))
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=STATUS_REQUESTED)
    title = Column(String)
    appointment_type = Column(String)
    description = Column(String)
    late_cancellation = Column(Boolean, nullable=False, default=False)
    rescheduled_from_id = Column(Integer, ForeignKey("appointments.id"))
    created_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False)

    provider = relationship(Provider)
    transitions = relationship(
        "AppointmentTransition",
        back_populates="appointment",
        order_by="AppointmentTransition.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class AppointmentTransition(Base):
    """Append-only audit record of one appointment status change."""
    __tablename__ = "appointment_transitions"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    actor_role = Column(String, nullable=False)
    from_status = Column(String)
    to_status = Column(String, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    note = Column(String)

    appointment = relationship(Appointment, back_populates="transitions")


class AuditTrailImmutable(RuntimeError):
    pass


@event.listens_for(AppointmentTransition, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise AuditTrailImmutable(f'Audit record {target.id} cannot be modified.')


@event.listens_for(AppointmentTransition, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise AuditTrailImmutable(f'Audit record {target.id} cannot be deleted.')
