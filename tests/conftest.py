from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
import threading

import pytest

from api import create_app
from models.booking import Booking
from models.db_storage import DBStorage
from models.equipment import Equipment
from models.refresh_token import RefreshToken
from models.user import User, UserRole
from services.bookings import BookingEngine
from services.clock import as_utc
from services.tokens import TokenManager
from utils.security import hash_password

T0 = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class MemoryStore:
    """Dict-backed store with the same contract the services use on DBStorage."""

    def __init__(self):
        self.users: dict[str, User] = {}
        self.equipment: dict[str, Equipment] = {}
        self.bookings: dict[str, Booking] = {}
        self.refresh_tokens: dict[str, RefreshToken] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._write = threading.Lock()

    # helpers for tests
    def add_user(self, user_id="u1", email="u1@lab.test", role=UserRole.GRAD_STUDENT, is_active=True):
        user = User(id=user_id, email=email, password_hash="x", role=role, is_active=is_active)
        self.users[user.id] = user
        return user

    def add_equipment(self, equipment_id="R1", name="Confocal microscope"):
        equipment = Equipment(id=equipment_id, name=name, location="Room 101", is_available=True)
        self.equipment[equipment.id] = equipment
        return equipment

    # store contract
    def get_user(self, user_id):
        return self.users.get(user_id)

    def get_equipment(self, resource_id):
        return self.equipment.get(resource_id)

    def get_booking(self, booking_id):
        return self.bookings.get(booking_id)

    def find_bookings(self, resource_id, status_not_in=(), exclude_id=None, start_from=None, start_to=None):
        rows = [
            b for b in self.bookings.values()
            if b.equipment_id == resource_id and b.status not in status_not_in and b.id != exclude_id
        ]
        if start_from is not None:
            rows = [b for b in rows if as_utc(b.start_time) >= start_from]
        if start_to is not None:
            rows = [b for b in rows if as_utc(b.start_time) <= start_to]
        return sorted(rows, key=lambda b: b.start_time)

    def insert_booking(self, booking):
        with self._write:
            self.bookings[booking.id] = booking
        return booking

    def update_booking(self, booking):
        return self.insert_booking(booking)

    @contextmanager
    def booking_guard(self, resource_id):
        with self._locks_guard:
            lock = self._locks.setdefault(resource_id, threading.Lock())
        with lock:
            yield

    def find_refresh_token(self, token):
        return self.refresh_tokens.get(token)

    def insert_refresh_token(self, record):
        with self._write:
            self.refresh_tokens[record.token] = record
        return record

    def delete_refresh_token(self, token) -> bool:
        with self._write:
            return self.refresh_tokens.pop(token, None) is not None

    def delete_refresh_tokens_for_user(self, user_id) -> int:
        with self._write:
            doomed = [t for t, r in self.refresh_tokens.items() if r.user_id == user_id]
            for token in doomed:
                del self.refresh_tokens[token]
            return len(doomed)

    def purge_expired_refresh_tokens(self, now) -> int:
        with self._write:
            doomed = [t for t, r in self.refresh_tokens.items() if as_utc(r.expires_at) <= now]
            for token in doomed:
                del self.refresh_tokens[token]
            return len(doomed)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = MemoryStore()
    store.add_user()
    store.add_equipment()
    return store


@pytest.fixture
def engine(store, clock):
    return BookingEngine(store, clock=clock)


@pytest.fixture
def tokens(store, clock):
    return TokenManager(
        store,
        access_secret="access-secret",
        refresh_secret="refresh-secret",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
        clock=clock,
    )


@pytest.fixture
def db_storage():
    storage = DBStorage("sqlite://")
    storage.reload()
    yield storage
    storage.drop_all()


@pytest.fixture
def app(db_storage, clock):
    return create_app("test", storage=db_storage, clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app, db_storage):
    """Insert a user directly and return (user, auth headers, session)."""
    counter = {"n": 0}

    def _make(role=UserRole.GRAD_STUDENT, password="correct-horse"):
        counter["n"] += 1
        user = User(
            email=f"member{counter['n']}@lab.test",
            password_hash=hash_password(password),
            first_name="Member",
            last_name=str(counter["n"]),
            role=role,
            is_active=True,
        )
        db_storage.new(user)
        db_storage.save()
        session = app.extensions["labbook.tokens"].issue_session(user.id)
        headers = {"Authorization": f"Bearer {session.access_token}"}
        return user, headers, session

    return _make


@pytest.fixture
def microscope(db_storage):
    equipment = Equipment(name="Confocal microscope", location="Room 101", is_available=True, booking_duration=60)
    db_storage.new(equipment)
    db_storage.save()
    return equipment
