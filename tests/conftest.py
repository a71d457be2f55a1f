import os
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test.db")

from mzansicare.main import app
from mzansicare.core.database import Base, SessionLocal, engine, redis_client
from mzansicare.core.security import UserRole, create_token_for
from mzansicare.models.facility import Facility
from mzansicare.models.user import User
from mzansicare.services.facility_directory import FacilityDirectory
from mzansicare.services.queue_service import QueueService
from mzansicare.services.updates import TicketUpdateBroker

# Johannesburg Central Clinic
JHB = {"lat": -26.2041, "lng": 28.0473}


class FakeClock:
    """Server clock that advances one minute per reading."""

    def __init__(self, start=datetime(2025, 3, 3, 9, 0), step=timedelta(minutes=1)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def dispatch(self, notification):
        self.sent.append(notification)
        return True


@pytest.fixture(scope="function")
def test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    redis_client.flushall()


@pytest.fixture
def client(test_db):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def facility(db):
    record = Facility(
        id="jhb-central",
        name="Johannesburg Central Clinic",
        latitude=JHB["lat"],
        longitude=JHB["lng"],
        services=["Primary Care"],
    )
    db.add(record)
    db.add(Facility(id="no-coords", name="Mobile Clinic", services=[]))
    db.commit()
    return record


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def broker():
    return TicketUpdateBroker()


@pytest.fixture
def service(db, facility, notifier, broker):
    return QueueService(
        db,
        FacilityDirectory(),
        notifier=notifier,
        broker=broker,
        clock=FakeClock(),
        avg_service_minutes=6,
        geofence_radius_km=25,
    )


def make_user(db, email, role=UserRole.PATIENT, push_token=None):
    user = User(
        email=email,
        password_hash="unused",
        full_name=email.split("@")[0].title(),
        role=role,
        push_token=push_token,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    token = create_token_for(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {token.access_token}"}
