import os
from datetime import date, datetime, time, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from backend.database import Base  # noqa: E402
from backend.models import appointment, hospital, provider, queue_entry, schedule_lock, user  # noqa: E402,F401
from backend.models.hospital import Hospital  # noqa: E402
from backend.models.provider import Provider, WorkingHours  # noqa: E402
from backend.models.user import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, User  # noqa: E402
from backend.scheduling.context import Principal, RequestContext  # noqa: E402

# 2030-01-07 is a Monday; "now" defaults to the day before.
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def context_for(person: User, now: datetime = NOW) -> RequestContext:
    return RequestContext(
        principal=Principal(user_id=person.id, role=person.role, hospital_id=person.hospital_id),
        now=now,
    )


def seed_clinic(db) -> SimpleNamespace:
    general = Hospital(name='General Hospital', auto_confirm=False)
    other = Hospital(name='Other Hospital', auto_confirm=False)
    db.add_all([general, other])
    db.flush()

    patient = User(email='patient@example.com', role=ROLE_PATIENT, first_name='Ana', last_name='Kovac',
                   national_id='0101990170001')
    other_patient = User(email='other@example.com', role=ROLE_PATIENT, first_name='Ivo', last_name='Horvat',
                         national_id='0202985170002')
    doctor = User(email='doctor@example.com', role=ROLE_DOCTOR, hospital_id=general.id)
    other_doctor = User(email='doctor2@example.com', role=ROLE_DOCTOR, hospital_id=general.id)
    admin = User(email='admin@example.com', role=ROLE_ADMIN, hospital_id=general.id)
    other_admin = User(email='admin@other.example.com', role=ROLE_ADMIN, hospital_id=other.id)
    db.add_all([patient, other_patient, doctor, other_doctor, admin, other_admin])
    db.flush()

    clinician = Provider(
        hospital_id=general.id,
        user_id=doctor.id,
        name='Dr. Mujic',
        slot_minutes=30,
        timezone='UTC',
    )
    clinician.working_hours.append(WorkingHours(weekday=MONDAY.weekday(), start_time=time(9, 0), end_time=time(12, 0)))
    db.add(clinician)
    db.commit()

    return SimpleNamespace(
        hospital=general,
        other_hospital=other,
        patient=patient,
        other_patient=other_patient,
        doctor=doctor,
        other_doctor=other_doctor,
        admin=admin,
        other_admin=other_admin,
        provider=clinician,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clinic(db) -> SimpleNamespace:
    return seed_clinic(db)


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def file_session_factory(tmp_path):
    """A file-backed database, for tests that book from several threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'scheduling.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


class ApiClient:
    """TestClient whose caller identity is chosen per test."""

    def __init__(self, client):
        self.client = client
        self.principal = None
        self.now = NOW

    def act_as(self, person: User, now: datetime = NOW) -> 'ApiClient':
        self.principal = context_for(person, now).principal
        self.now = now
        return self

    def __getattr__(self, name):
        return getattr(self.client, name)


@pytest.fixture
def api(session_factory, clinic):
    from fastapi.testclient import TestClient

    from backend.auth.dependencies import get_current_principal, get_request_context
    from backend.database import get_db
    from backend.main import app

    wrapper = ApiClient(TestClient(app))

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_principal] = lambda: wrapper.principal
    app.dependency_overrides[get_request_context] = lambda: RequestContext(principal=wrapper.principal, now=wrapper.now)
    try:
        yield wrapper.act_as(clinic.patient)
    finally:
        app.dependency_overrides.clear()
