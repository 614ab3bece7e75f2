"""Lock rows serializing writers per provider and day."""

from sqlalchemy import Column, Date, ForeignKey, Integer, String
from backend.database import Base

SCOPE_BOOKING = 'booking'
SCOPE_QUEUE = 'queue'


class ProviderDayLock(Base):
    """One row per (provider, day, scope); writers hold it FOR UPDATE."""
    __tablename__ = "provider_day_locks"

    provider_id = Column(Integer, ForeignKey("providers.id"), primary_key=True)
    day = Column(Date, primary_key=True)
    scope = Column(String, primary_key=True)
