import os
from datetime import date, datetime, timedelta, timezone

import pytest

# Set testing environment before the application is imported
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

from fastapi.testclient import TestClient
from jose import jwt

from clinic_scheduler.main import app
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.database import Base, SessionLocal, engine, get_redis, init_db
from clinic_scheduler.core.security import UserRole
from clinic_scheduler.models.user import User
from clinic_scheduler.schemas.schedule import ScheduleEntry
from clinic_scheduler.services.schedule_service import ScheduleService
from clinic_scheduler.utils.dates import day_of_week

class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the app uses."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = str(value)
        return True

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        return True

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

@pytest.fixture
def fake_redis():
    fake = FakeRedis()
    app.dependency_overrides[get_redis] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_redis, None)

@pytest.fixture(scope="function")
def test_db():
    # Fresh tables for every test
    Base.metadata.drop_all(bind=engine)
    init_db()
    db = SessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def client(test_db, fake_redis):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

@pytest.fixture
def make_user(test_db):
    counter = {"n": 0}

    def _make_user(role: UserRole, name: str = None) -> User:
        counter["n"] += 1
        user = User(
            email=f"{role.value}{counter['n']}@example.com",
            name=name or f"{role.value.title()} {counter['n']}",
            role=role,
            is_active=True
        )
        test_db.add(user)
        test_db.commit()
        test_db.refresh(user)
        return user

    return _make_user

@pytest.fixture
def doctor(make_user):
    return make_user(UserRole.DOCTOR, "Grey")

@pytest.fixture
def patient(make_user):
    return make_user(UserRole.PATIENT, "Alice Smith")

@pytest.fixture
def other_patient(make_user):
    return make_user(UserRole.PATIENT, "Bob Jones")

@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, "Clinic Admin")

def auth_headers(user: User) -> dict:
    """Bearer headers for a token as the identity provider would issue it."""
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "token_type": "access",
        "exp": int((datetime.now(timezone.utc) + timedelta(minutes=30)).timestamp()),
    }
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def headers():
    return auth_headers

def next_weekday(index: int, after: date = None) -> date:
    """First date after ``after`` (default today) whose Sunday-based index is ``index``."""
    day = (after or date.today()) + timedelta(days=1)
    while day_of_week(day) != index:
        day += timedelta(days=1)
    return day

@pytest.fixture
def weekday():
    return next_weekday

@pytest.fixture
def monday():
    return next_weekday(1)

@pytest.fixture
def set_schedule(test_db):
    """Replace a doctor's weekly schedule directly through the service."""

    def _set_schedule(doctor: User, *entries: dict):
        return ScheduleService(test_db).set_weekly_schedule(
            doctor.id, [ScheduleEntry(**entry) for entry in entries]
        )

    return _set_schedule

@pytest.fixture
def monday_morning(set_schedule, doctor):
    """Doctor works Mondays 09:00-12:00, one patient per hour."""
    return set_schedule(doctor, {
        "dayOfWeek": 1,
        "startTime": "09:00",
        "endTime": "12:00",
        "maxPatientsPerHour": 1,
    })

@pytest.fixture
def book(client, headers):
    """Book through the API as ``patient`` (or ``as_user``)."""

    def _book(patient: User, doctor: User, day: date, at: str, as_user: User = None, **extra):
        body = {
            "patientId": patient.id,
            "doctorId": doctor.id,
            "date": day.isoformat(),
            "time": at,
        }
        body.update(extra)
        return client.post(
            "/api/v1/appointments", json=body, headers=headers(as_user or patient)
        )

    return _book
