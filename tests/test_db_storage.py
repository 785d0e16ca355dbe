from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from models.booking import Booking, BookingStatus
from models.equipment import Equipment
from models.refresh_token import RefreshToken
from models.user import User
from services.bookings import BookingEngine, BookingRequest, BookingChanges
from services.errors import BookingConflict, InvalidToken, StorageUnavailable
from services.tokens import TokenManager
from tests.conftest import at


@pytest.fixture
def seeded(db_storage):
    user = User(email="pi@lab.test", password_hash="x", is_active=True)
    equipment = Equipment(name="FACS sorter", location="B2", is_available=True)
    db_storage.new(user)
    db_storage.new(equipment)
    db_storage.save()
    return user, equipment


def test_find_bookings_filters(db_storage, seeded):
    user, equipment = seeded
    keep = Booking(equipment_id=equipment.id, user_id=user.id, start_time=at(9), end_time=at(10),
                   status=BookingStatus.SCHEDULED)
    gone = Booking(equipment_id=equipment.id, user_id=user.id, start_time=at(10), end_time=at(11),
                   status=BookingStatus.CANCELLED)
    other = Booking(equipment_id=equipment.id, user_id=user.id, start_time=at(12), end_time=at(13),
                    status=BookingStatus.SCHEDULED)
    for b in (keep, gone, other):
        db_storage.insert_booking(b)

    rows = db_storage.find_bookings(equipment.id, status_not_in=(BookingStatus.CANCELLED,))
    assert [b.id for b in rows] == [keep.id, other.id]
    rows = db_storage.find_bookings(equipment.id, status_not_in=(BookingStatus.CANCELLED,), exclude_id=keep.id)
    assert [b.id for b in rows] == [other.id]
    rows = db_storage.find_bookings(equipment.id, start_from=at(11, 30), start_to=at(12))
    assert [b.id for b in rows] == [other.id]


def test_engine_on_sqlite(db_storage, seeded, clock):
    user, equipment = seeded
    engine = BookingEngine(db_storage, clock=clock)
    first = engine.create_booking(BookingRequest(equipment.id, user.id, at(9), at(10)))

    with pytest.raises(BookingConflict) as exc:
        engine.create_booking(BookingRequest(equipment.id, user.id, at(9, 30), at(10, 30)))
    assert [b.id for b in exc.value.conflicting_bookings] == [first.id]

    engine.create_booking(BookingRequest(equipment.id, user.id, at(10), at(11)))
    engine.cancel_booking(first.id)
    engine.create_booking(BookingRequest(equipment.id, user.id, at(9), at(10)))

    db_storage.close()
    active = db_storage.find_bookings(equipment.id, status_not_in=(BookingStatus.CANCELLED,))
    assert len(active) == 2


def test_reschedule_on_sqlite(db_storage, seeded, clock):
    user, equipment = seeded
    engine = BookingEngine(db_storage, clock=clock)
    booking = engine.create_booking(BookingRequest(equipment.id, user.id, at(9), at(10)))
    engine.update_booking(booking.id, BookingChanges(start_time=at(9, 30), end_time=at(11)))

    db_storage.close()
    reloaded = db_storage.get_booking(booking.id)
    assert (reloaded.start_time.hour, reloaded.start_time.minute) == (9, 30)
    assert reloaded.end_time.hour == 11


def test_guard_rolls_back_on_error(db_storage, seeded):
    user, equipment = seeded
    with pytest.raises(RuntimeError):
        with db_storage.booking_guard(equipment.id):
            db_storage.new(Booking(equipment_id=equipment.id, user_id=user.id,
                                   start_time=at(9), end_time=at(10)))
            raise RuntimeError("boom")
    assert db_storage.find_bookings(equipment.id) == []


def test_refresh_token_crud(db_storage, seeded, clock):
    user, _ = seeded
    db_storage.insert_refresh_token(RefreshToken(token="t1", user_id=user.id, expires_at=clock() + timedelta(days=1)))
    db_storage.insert_refresh_token(RefreshToken(token="t2", user_id=user.id, expires_at=clock() - timedelta(days=1)))

    assert db_storage.find_refresh_token("t1").user_id == user.id
    assert db_storage.delete_refresh_token("t1") is True
    assert db_storage.delete_refresh_token("t1") is False
    assert db_storage.find_refresh_token("t1") is None

    assert db_storage.purge_expired_refresh_tokens(clock()) == 1
    assert db_storage.find_refresh_token("t2") is None


def test_token_manager_on_sqlite(db_storage, seeded, clock):
    user, _ = seeded
    manager = TokenManager(db_storage, "a", "r", clock=clock)
    session = manager.issue_session(user.id)
    rotated = manager.rotate(session.refresh_token)
    with pytest.raises(InvalidToken):
        manager.rotate(session.refresh_token)

    clock.advance(days=8)
    with pytest.raises(InvalidToken):
        manager.rotate(rotated.refresh_token)
    assert manager.revoke_all(user.id) == 1


def test_operational_error_becomes_storage_unavailable(db_storage, monkeypatch):
    session = db_storage.get_session()

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(session, "commit", broken_commit)
    with pytest.raises(StorageUnavailable):
        db_storage.save()
