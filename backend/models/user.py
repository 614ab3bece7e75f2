"""User model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from backend.database import Base

ROLE_PATIENT = 'patient'
ROLE_DOCTOR = 'doctor'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_PATIENT, ROLE_DOCTOR, ROLE_ADMIN)


class User(Base):
    """Represents a portal user: a patient, a doctor or a hospital admin."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String)
    last_name = Column(String)
    role = Column(String, nullable=False, default=ROLE_PATIENT)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"))
    national_id = Column(String, unique=True, index=True)
