import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import mongomock
import pytest
from fastapi.testclient import TestClient

from bookings import BookingService
from database import EntityStore, get_store, sanitize
from main import app
from schemas import BookingCreate, Caretaker, User
from security import create_access_token

START = datetime(2030, 1, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return EntityStore(mongomock.MongoClient()["caretaker_test"])


@pytest.fixture
def make_user(store):
    counter = {"n": 0}

    def _make(role="user", is_active=True, password_hash="not-a-real-hash"):
        counter["n"] += 1
        doc = store.create(
            "user",
            User(
                name=f"Test {role} {counter['n']}",
                email=f"{role}{counter['n']}@example.com",
                password_hash=password_hash,
                role=role,
                is_active=is_active,
            ),
        )
        return sanitize(doc)

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def make_caretaker(store):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Caretaker {counter['n']}",
            "email": f"caretaker{counter['n']}@example.com",
            "phone": "9999999999",
            "age": 35,
            "gender": "female",
            "specialization": "both",
            "experience": 5,
            "hourly_rate": 100,
            "is_verified": True,
            "availability": "available",
        }
        data.update(overrides)
        return store.create("caretaker", Caretaker(**data))

    return _make


@pytest.fixture
def caretaker(make_caretaker):
    return make_caretaker()


def booking_input(caretaker, duration=3, **overrides):
    data = {
        "caretaker_id": str(caretaker["_id"]),
        "service_type": "elderly",
        "start_date": START,
        "end_date": START + timedelta(hours=duration),
        "duration": duration,
    }
    data.update(overrides)
    return BookingCreate(**data)


@pytest.fixture
def completed_booking(store, user, admin, make_caretaker):
    """Factory: a booking by ``user`` that an admin has marked completed."""

    def _make(caretaker=None):
        caretaker = caretaker or make_caretaker()
        service = BookingService(store)
        booking = service.create(user, booking_input(caretaker))
        return service.update_status(admin, str(booking["_id"]), "completed")

    return _make


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(actor):
    return {"Authorization": f"Bearer {create_access_token({'sub': actor['id']})}"}
