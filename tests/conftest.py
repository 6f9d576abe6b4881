import os
from datetime import datetime, timedelta

# Settings are read on import, so the environment must be in place first
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"
os.environ["RECONCILER_ENABLED"] = "0"

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.core.database import Base, SessionLocal, engine
from app.core.security import UserRole, create_access_token, get_password_hash
from app.models import Booking, BookingStatus, Doctor, Slot, User

TEST_PASSWORD = "TestPassword123"
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)

@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db_session(test_db):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

def create_user(db, email, role=UserRole.PATIENT, name=None):
    user = User(
        name=name or email.split("@")[0].title(),
        email=email,
        password_hash=TEST_PASSWORD_HASH,
        role=role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

def auth_headers(user):
    token = create_access_token(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {token}"}

def add_booking(db, slot, user, status, entered_at=None, created_at=None):
    """Write a ledger row directly, bypassing the engine."""
    entered_at = entered_at or datetime.utcnow()
    booking = Booking(
        slot_id=slot.id,
        user_id=user.id,
        status=status,
        status_changed_at=entered_at,
        created_at=created_at or entered_at,
    )
    db.add(booking)
    if status in (BookingStatus.CONFIRMED, BookingStatus.BUFFER):
        slot.is_booked = True
    db.commit()
    db.refresh(booking)
    return booking

@pytest.fixture
def patient(db_session):
    return create_user(db_session, "alice@example.com", name="Alice")

@pytest.fixture
def other_patient(db_session):
    return create_user(db_session, "bob@example.com", name="Bob")

@pytest.fixture
def admin(db_session):
    return create_user(db_session, "admin@example.com", role=UserRole.ADMIN, name="Admin")

@pytest.fixture
def doctor(db_session):
    doctor = Doctor(name="Dr. Grey", specialization="Cardiology")
    db_session.add(doctor)
    db_session.commit()
    db_session.refresh(doctor)
    return doctor

@pytest.fixture
def slot(db_session, doctor):
    slot = Slot(
        doctor_id=doctor.id,
        start_time=datetime(2030, 1, 15, 9, 0),
        is_booked=False,
    )
    db_session.add(slot)
    db_session.commit()
    db_session.refresh(slot)
    return slot

@pytest.fixture
def later_slot(db_session, doctor):
    slot = Slot(
        doctor_id=doctor.id,
        start_time=datetime(2030, 1, 15, 9, 0) + timedelta(minutes=30),
        is_booked=False,
    )
    db_session.add(slot)
    db_session.commit()
    db_session.refresh(slot)
    return slot
