"""Provider, working hours and blackout model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Time
from sqlalchemy.orm import relationship

from backend.database import Base
from backend.models.hospital import Hospital
from backend.scheduling.timeslots import Interval


class Provider(Base):
    """A bookable doctor or hospital resource."""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    name = Column(String, nullable=False)
    specialty = Column(String)
    slot_minutes = Column(Integer, nullable=False, default=30)
    timezone = Column(String, nullable=False, default='UTC')

    hospital = relationship(Hospital)
    working_hours = relationship(
        "WorkingHours",
        back_populates="provider",
        cascade="all, delete-orphan",
        order_by="WorkingHours.weekday",
    )
    blackouts = relationship("Blackout", back_populates="provider", cascade="all, delete-orphan")


class WorkingHours(Base):
    """A recurring weekly window, in the provider's local time."""
    __tablename__ = "working_hours"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # Monday == 0
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    provider = relationship(Provider, back_populates="working_hours")


class Blackout(Base):
    """An explicit period in which a provider takes no bookings."""
    __tablename__ = "blackouts"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String)

    provider = relationship(Provider, back_populates="blackouts")

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)
