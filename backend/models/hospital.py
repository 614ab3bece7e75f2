"""Hospital (tenant) model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from backend.database import Base


class Hospital(Base):
    """A tenant owning providers, appointments and queues."""
    __tablename__ = "hospitals"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    auto_confirm = Column(Boolean, nullable=False, default=False)
    cancellation_cutoff_minutes = Column(Integer)
