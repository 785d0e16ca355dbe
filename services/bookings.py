"""
Equipment booking engine.

A booking occupies the half-open interval [start_time, end_time) on one
piece of equipment. Two non-cancelled bookings of the same equipment may
touch end-to-start but never overlap. Creation and time changes run the
overlap check and the write inside the store's booking_guard so
concurrent requests for one resource cannot both pass the check.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Callable, List, Optional

from models.booking import Booking, BookingStatus, STATUS_TRANSITIONS
from services.clock import as_utc, utcnow
from services.errors import (
    BookingConflict,
    BookingNotFound,
    InvalidInterval,
    InvalidStatusTransition,
    ResourceNotFound,
)

logger = logging.getLogger(__name__)

INACTIVE_STATUSES = (BookingStatus.CANCELLED,)
DEFAULT_SCHEDULE_WINDOW = timedelta(days=7)


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open overlap test: [start, end) and [other_start, other_end) share an instant."""
    return as_utc(start) < as_utc(other_end) and as_utc(other_start) < as_utc(end)


def find_conflicts(bookings, start: datetime, end: datetime, exclude_id: Optional[str] = None) -> List[Booking]:
    """Every non-cancelled booking in `bookings` overlapping [start, end)."""
    return [
        b for b in bookings
        if b.id != exclude_id
        and b.status not in INACTIVE_STATUSES
        and overlaps(start, end, b.start_time, b.end_time)
    ]


@dataclass
class ConflictCheck:
    conflict: bool
    conflicting_bookings: List[Booking] = field(default_factory=list)


@dataclass
class BookingRequest:
    """Fields accepted when reserving equipment."""
    resource_id: str
    owner_id: str
    start_time: datetime
    end_time: datetime
    purpose: Optional[str] = None
    notes: Optional[str] = None
    is_recurring: bool = False
    recurring_pattern: Optional[str] = None


@dataclass
class BookingChanges:
    """Mutable booking fields; None leaves the field unchanged."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    purpose: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[BookingStatus] = None

    @property
    def changes_interval(self) -> bool:
        return self.start_time is not None or self.end_time is not None


def _validated_interval(start: datetime, end: datetime):
    if start is None or end is None:
        raise InvalidInterval("Booking requires both a start and an end time.")
    start, end = as_utc(start), as_utc(end)
    if start >= end:
        raise InvalidInterval()
    return start, end


class BookingEngine:
    """Conflict checking and lifecycle for equipment bookings."""

    def __init__(self, store, clock: Callable[[], datetime] = utcnow,
                 schedule_window: timedelta = DEFAULT_SCHEDULE_WINDOW):
        self.store = store
        self.clock = clock
        self.schedule_window = schedule_window

    def check_conflict(self, resource_id: str, start_time: datetime, end_time: datetime,
                       exclude_booking_id: Optional[str] = None) -> ConflictCheck:
        """
        Read-only: report every active booking of `resource_id` overlapping
        [start_time, end_time), ignoring `exclude_booking_id`.

        Raises InvalidInterval when start >= end, ResourceNotFound when the
        equipment does not exist.
        """
        start, end = _validated_interval(start_time, end_time)
        if self.store.get_equipment(resource_id) is None:
            raise ResourceNotFound()
        existing = self.store.find_bookings(
            resource_id, status_not_in=INACTIVE_STATUSES, exclude_id=exclude_booking_id
        )
        conflicts = find_conflicts(existing, start, end, exclude_id=exclude_booking_id)
        return ConflictCheck(conflict=bool(conflicts), conflicting_bookings=conflicts)

    def create_booking(self, request: BookingRequest) -> Booking:
        start, end = _validated_interval(request.start_time, request.end_time)
        with self.store.booking_guard(request.resource_id):
            result = self.check_conflict(request.resource_id, start, end)
            if result.conflict:
                logger.warning(
                    "Booking rejected: equipment %s already booked (%d conflicts)",
                    request.resource_id, len(result.conflicting_bookings),
                )
                raise BookingConflict(result.conflicting_bookings)
            booking = Booking(
                equipment_id=request.resource_id,
                user_id=request.owner_id,
                start_time=start,
                end_time=end,
                status=BookingStatus.SCHEDULED,
                purpose=request.purpose,
                notes=request.notes,
                is_recurring=request.is_recurring,
                recurring_pattern=request.recurring_pattern,
            )
            booking = self.store.insert_booking(booking)
        logger.info("Booking %s created on equipment %s", booking.id, booking.equipment_id)
        return booking

    def update_booking(self, booking_id: str, changes: BookingChanges) -> Booking:
        booking = self._get(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidStatusTransition("Cancelled bookings cannot be changed.")

        if changes.status is not None and changes.status != booking.status:
            if changes.status not in STATUS_TRANSITIONS[BookingStatus(booking.status)]:
                raise InvalidStatusTransition(
                    f"Booking cannot move from {BookingStatus(booking.status).value} to {changes.status.value}."
                )

        if not changes.changes_interval:
            self._apply(booking, changes)
            booking = self.store.update_booking(booking)
            logger.info("Booking %s updated", booking.id)
            return booking

        start, end = _validated_interval(
            changes.start_time or booking.start_time,
            changes.end_time or booking.end_time,
        )
        with self.store.booking_guard(booking.equipment_id):
            result = self.check_conflict(booking.equipment_id, start, end, exclude_booking_id=booking.id)
            if result.conflict:
                logger.warning("Booking %s reschedule rejected: %d conflicts",
                               booking.id, len(result.conflicting_bookings))
                raise BookingConflict(result.conflicting_bookings)
            booking.start_time = start
            booking.end_time = end
            self._apply(booking, changes)
            booking = self.store.update_booking(booking)
        logger.info("Booking %s rescheduled", booking.id)
        return booking

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self._get(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            return booking
        if BookingStatus.CANCELLED not in STATUS_TRANSITIONS[BookingStatus(booking.status)]:
            raise InvalidStatusTransition("Completed bookings cannot be cancelled.")
        booking.status = BookingStatus.CANCELLED
        booking = self.store.update_booking(booking)
        logger.info("Booking %s cancelled", booking.id)
        return booking

    def schedule(self, resource_id: str, start: Optional[datetime] = None,
                 end: Optional[datetime] = None) -> List[Booking]:
        """Active bookings starting within [start, end]; defaults to the coming week."""
        if self.store.get_equipment(resource_id) is None:
            raise ResourceNotFound()
        start = as_utc(start) or self.clock()
        end = as_utc(end) or start + self.schedule_window
        if start > end:
            raise InvalidInterval("Schedule window must end after it starts.")
        return self.store.find_bookings(
            resource_id, status_not_in=INACTIVE_STATUSES, start_from=start, start_to=end
        )

    def _get(self, booking_id: str) -> Booking:
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound()
        return booking

    @staticmethod
    def _apply(booking: Booking, changes: BookingChanges) -> None:
        for name in ("purpose", "notes", "status"):
            value = getattr(changes, name)
            if value is not None:
                setattr(booking, name, value)
