"""Walk-in queue model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship

from backend.database import Base
from backend.models.provider import Provider

QUEUE_WAITING = 'waiting'
QUEUE_SERVING = 'serving'
QUEUE_COMPLETED = 'completed'


class QueueEntry(Base):
    """A same-day walk-in patient waiting for a provider.

    The patient may be unregistered, so identity is captured inline and
    ``patient_id`` is only set when it resolves to a known user.
    """
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"), nullable=False)
    service_date = Column(Date, nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"))
    national_id = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    priority = Column(Boolean, nullable=False, default=False)
    status = Column(String, nullable=False, default=QUEUE_WAITING)
    arrived_at = Column(DateTime(timezone=True), nullable=False)
    called_at = Column(DateTime(timezone=True))
    called_by = Column(Integer, ForeignKey("users.id"))
    completed_at = Column(DateTime(timezone=True))
    version = Column(Integer, nullable=False)

    provider = relationship(Provider)

    __table_args__ = (
        Index(
            "uq_queue_entries_one_serving",
            "provider_id",
            unique=True,
            sqlite_where=text("status = 'serving'"),
            postgresql_where=text("status = 'serving'"),
        ),
    )
    __mapper_args__ = {"version_id_col": version}
