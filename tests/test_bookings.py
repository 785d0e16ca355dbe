from __future__ import annotations

from datetime import datetime, timedelta
import random
import threading
import time

import pytest

from models.booking import BookingStatus
from services.bookings import (
    BookingChanges,
    BookingEngine,
    BookingRequest,
    find_conflicts,
    overlaps,
)
from services.errors import (
    BookingConflict,
    BookingNotFound,
    InvalidInterval,
    InvalidStatusTransition,
    ResourceNotFound,
)
from tests.conftest import MemoryStore, at


def request(start, end, resource_id="R1", owner_id="u1", **kwargs):
    return BookingRequest(resource_id=resource_id, owner_id=owner_id, start_time=start, end_time=end, **kwargs)


def test_overlaps_half_open():
    assert overlaps(at(9), at(10), at(9, 30), at(10, 30))
    assert overlaps(at(9), at(12), at(10), at(11))
    assert not overlaps(at(9), at(10), at(10), at(11))
    assert not overlaps(at(10), at(11), at(9), at(10))


def test_concrete_r1_scenario(engine):
    first = engine.create_booking(request(at(9), at(10)))

    with pytest.raises(BookingConflict) as exc:
        engine.create_booking(request(at(9, 30), at(10, 30)))
    assert [b.id for b in exc.value.conflicting_bookings] == [first.id]

    third = engine.create_booking(request(at(10), at(11)))
    assert third.status == BookingStatus.SCHEDULED


def test_back_to_back_bookings_do_not_conflict(engine):
    engine.create_booking(request(at(9), at(10)))
    result = engine.check_conflict("R1", at(10), at(11))
    assert result.conflict is False
    assert result.conflicting_bookings == []


def test_check_conflict_returns_every_overlap(engine):
    a = engine.create_booking(request(at(9), at(10)))
    b = engine.create_booking(request(at(11), at(12)))
    engine.create_booking(request(at(13), at(14)))

    result = engine.check_conflict("R1", at(9, 30), at(11, 30))
    assert result.conflict is True
    assert [x.id for x in result.conflicting_bookings] == [a.id, b.id]


def test_check_conflict_is_read_only(engine, store):
    engine.check_conflict("R1", at(9), at(10))
    assert store.bookings == {}


def test_other_resources_do_not_conflict(engine, store):
    store.add_equipment("R2", name="Centrifuge")
    engine.create_booking(request(at(9), at(10)))
    engine.create_booking(request(at(9), at(10), resource_id="R2"))
    assert len(store.bookings) == 2


def test_cancel_then_rebook_identical_interval(engine):
    booking = engine.create_booking(request(at(9), at(10)))
    engine.cancel_booking(booking.id)

    again = engine.create_booking(request(at(9), at(10)))
    assert again.id != booking.id


@pytest.mark.parametrize("start,end", [(at(10), at(10)), (at(11), at(10))])
def test_invalid_interval(engine, store, start, end):
    with pytest.raises(InvalidInterval):
        engine.check_conflict("R1", start, end)
    with pytest.raises(InvalidInterval):
        engine.create_booking(request(start, end))
    assert store.bookings == {}


def test_unknown_resource(engine):
    with pytest.raises(ResourceNotFound):
        engine.check_conflict("nope", at(9), at(10))
    with pytest.raises(ResourceNotFound):
        engine.create_booking(request(at(9), at(10), resource_id="nope"))


def test_invalid_interval_checked_before_resource(engine):
    with pytest.raises(InvalidInterval):
        engine.check_conflict("nope", at(10), at(9))


def test_naive_datetimes_are_utc(engine):
    engine.create_booking(request(datetime(2025, 1, 1, 9), datetime(2025, 1, 1, 10)))
    assert engine.check_conflict("R1", at(9, 59), at(11)).conflict


def test_reschedule_excludes_itself(engine):
    booking = engine.create_booking(request(at(9), at(10)))
    moved = engine.update_booking(booking.id, BookingChanges(end_time=at(10, 30)))
    assert moved.end_time == at(10, 30)
    assert moved.start_time == at(9)


def test_reschedule_into_neighbour_conflicts(engine):
    first = engine.create_booking(request(at(9), at(10)))
    second = engine.create_booking(request(at(10), at(11)))

    with pytest.raises(BookingConflict) as exc:
        engine.update_booking(first.id, BookingChanges(end_time=at(10, 15)))
    assert [b.id for b in exc.value.conflicting_bookings] == [second.id]
    assert first.end_time == at(10)


def test_reschedule_with_inverted_interval(engine):
    booking = engine.create_booking(request(at(9), at(10)))
    with pytest.raises(InvalidInterval):
        engine.update_booking(booking.id, BookingChanges(end_time=at(8)))


def test_update_non_time_fields(engine):
    booking = engine.create_booking(request(at(9), at(10), purpose="imaging"))
    updated = engine.update_booking(booking.id, BookingChanges(notes="bring slides", status=BookingStatus.IN_PROGRESS))
    assert updated.notes == "bring slides"
    assert updated.purpose == "imaging"
    assert updated.status == BookingStatus.IN_PROGRESS


def test_status_lifecycle(engine):
    booking = engine.create_booking(request(at(9), at(10)))
    with pytest.raises(InvalidStatusTransition):
        engine.update_booking(booking.id, BookingChanges(status=BookingStatus.COMPLETED))

    engine.update_booking(booking.id, BookingChanges(status=BookingStatus.IN_PROGRESS))
    engine.update_booking(booking.id, BookingChanges(status=BookingStatus.COMPLETED))
    with pytest.raises(InvalidStatusTransition):
        engine.cancel_booking(booking.id)


def test_cancelled_is_terminal(engine):
    booking = engine.create_booking(request(at(9), at(10)))
    engine.cancel_booking(booking.id)
    assert engine.cancel_booking(booking.id).status == BookingStatus.CANCELLED
    with pytest.raises(InvalidStatusTransition):
        engine.update_booking(booking.id, BookingChanges(start_time=at(8)))


def test_unknown_booking(engine):
    with pytest.raises(BookingNotFound):
        engine.update_booking("missing", BookingChanges(notes="x"))
    with pytest.raises(BookingNotFound):
        engine.cancel_booking("missing")


def test_schedule_defaults_to_coming_week(engine, clock):
    inside = engine.create_booking(request(at(9), at(10)))
    later = engine.create_booking(request(at(9, day=20), at(10, day=20)))
    cancelled = engine.create_booking(request(at(11), at(12)))
    engine.cancel_booking(cancelled.id)

    ids = [b.id for b in engine.schedule("R1")]
    assert ids == [inside.id]
    ids = [b.id for b in engine.schedule("R1", at(0), at(0, day=31))]
    assert ids == [inside.id, later.id]


def test_find_conflicts_skips_cancelled(engine):
    booking = engine.create_booking(request(at(9), at(10)))
    booking.status = BookingStatus.CANCELLED
    assert find_conflicts([booking], at(9), at(10)) == []


@pytest.mark.parametrize("seed", range(20))
def test_random_bookings_never_overlap(seed, clock):
    rng = random.Random(seed)
    store = MemoryStore()
    store.add_user()
    store.add_equipment()
    engine = BookingEngine(store, clock=clock)
    base = at(0)

    for _ in range(60):
        start = base + timedelta(minutes=15 * rng.randrange(0, 96))
        end = start + timedelta(minutes=15 * rng.randrange(1, 12))
        active = [b for b in store.bookings.values() if b.status != BookingStatus.CANCELLED]
        expected_conflict = any(overlaps(start, end, b.start_time, b.end_time) for b in active)
        try:
            engine.create_booking(request(start, end))
            assert not expected_conflict
        except BookingConflict as exc:
            assert expected_conflict
            assert exc.conflicting_bookings
        if active and rng.random() < 0.2:
            engine.cancel_booking(rng.choice(active).id)

    active = [b for b in store.bookings.values() if b.status != BookingStatus.CANCELLED]
    for i, a in enumerate(active):
        for b in active[i + 1:]:
            assert not (a.start_time < b.end_time and b.start_time < a.end_time)


class SlowReadStore(MemoryStore):
    """Widens the gap between the conflict read and the insert."""

    def find_bookings(self, *args, **kwargs):
        rows = super().find_bookings(*args, **kwargs)
        time.sleep(0.01)
        return rows


def test_concurrent_requests_for_same_slot_book_once(clock):
    store = SlowReadStore()
    store.add_user()
    store.add_equipment()
    engine = BookingEngine(store, clock=clock)
    barrier = threading.Barrier(8)
    outcomes = []

    def attempt(offset):
        barrier.wait()
        try:
            engine.create_booking(request(at(9) + timedelta(minutes=offset), at(10) + timedelta(minutes=offset)))
            outcomes.append("ok")
        except BookingConflict:
            outcomes.append("conflict")

    threads = [threading.Thread(target=attempt, args=(i * 5,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 7
    assert len(store.bookings) == 1


def test_conflict_error_is_not_retryable():
    assert BookingConflict([]).retryable is False
    assert BookingConflict([]).status == 409
