import os
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from rehab_clinic import models  # noqa: E402,F401
from rehab_clinic.auth.jwt_handler import create_access_token  # noqa: E402
from rehab_clinic.auth.passwords import hash_password  # noqa: E402
from rehab_clinic.database import Base, get_db  # noqa: E402
from rehab_clinic.main import app  # noqa: E402
from rehab_clinic.models.appointment import Appointment  # noqa: E402
from rehab_clinic.models.patient import Patient  # noqa: E402
from rehab_clinic.models.service import Service  # noqa: E402
from rehab_clinic.models.staff import Staff, StaffAvailability  # noqa: E402
from rehab_clinic.models.user import User  # noqa: E402
from rehab_clinic.scheduling import parse_time  # noqa: E402

TEST_PASSWORD = 'secret123'


def next_weekday(weekday: int) -> date:
    """The next date strictly after today falling on ``weekday`` (0 = Monday)."""
    today = date.today()
    days_ahead = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead)


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def monday() -> date:
    return next_weekday(0)


@pytest.fixture
def tuesday() -> date:
    return next_weekday(1)


@pytest.fixture
def make_user(db_session):
    def factory(role: str = 'patient', email: str | None = None, password: str = TEST_PASSWORD) -> User:
        user = User(
            first_name='Test',
            last_name=role.capitalize(),
            email=email or f'{role}@example.com',
            hashed_password=hash_password(password),
            role=role,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture
def auth_headers():
    def build(user: User) -> dict[str, str]:
        token = create_access_token(subject=str(user.id), role=user.role)
        return {'Authorization': f'Bearer {token}'}

    return build


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(role='admin', email='admin@example.com')


@pytest.fixture
def therapist(db_session) -> Staff:
    staff = Staff(
        first_name='Dana',
        last_name='Reyes',
        role='Therapist',
        specialty='Physiotherapy',
        email='dana.reyes@example.com',
        phone='5551234567',
        qualifications=['DPT'],
        experience=8,
        is_active=True,
        availability=[
            StaffAvailability(day_of_week='Monday', day_index=0, start_minute=9 * 60, end_minute=17 * 60),
        ],
    )
    db_session.add(staff)
    db_session.commit()
    db_session.refresh(staff)
    return staff


@pytest.fixture
def service(db_session) -> Service:
    knee_rehab = Service(
        name='Knee Rehabilitation',
        description='Guided strengthening session for post-operative knees.',
        category='Physiotherapy',
        duration_minutes=30,
        price=80.0,
        specialty_required='Physiotherapy',
        is_active=True,
    )
    db_session.add(knee_rehab)
    db_session.commit()
    db_session.refresh(knee_rehab)
    return knee_rehab


@pytest.fixture
def patient(db_session) -> Patient:
    record = Patient(
        first_name='Sam',
        last_name='Ortiz',
        date_of_birth=date(1990, 5, 17),
        gender='Male',
        email='sam.ortiz@example.com',
        phone='5559876543',
    )
    db_session.add(record)
    db_session.commit()
    db_session.refresh(record)
    return record


@pytest.fixture
def book(db_session, patient, therapist, service):
    """Insert an appointment row directly, bypassing the booking rules."""

    def factory(day: date, start: str, end: str, status: str = 'Scheduled', **overrides) -> Appointment:
        appointment = Appointment(
            patient_id=overrides.pop('patient_id', patient.id),
            staff_id=overrides.pop('staff_id', therapist.id),
            service_id=overrides.pop('service_id', service.id),
            appointment_date=day,
            start_minute=parse_time(start),
            end_minute=parse_time(end),
            status=status,
            reason_for_visit='Knee pain follow-up',
            **overrides,
        )
        db_session.add(appointment)
        db_session.commit()
        db_session.refresh(appointment)
        return appointment

    return factory
