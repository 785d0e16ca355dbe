"""
Failure kinds surfaced by the booking and token services.

Every kind has a stable code and user-facing message so clients can tell
"pick another time" apart from "please log in again" and "try again shortly".
Only StorageUnavailable is retryable, and retrying is the caller's job.
"""
from __future__ import annotations


class LabBookError(Exception):
    code = "LABBOOK_ERROR"
    message = "Request could not be completed."
    status = 400
    retryable = False

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.message)
        self.details = details or {}

    def __str__(self) -> str:
        return self.args[0] if self.args else self.message


class InvalidInterval(LabBookError):
    code = "INVALID_INTERVAL"
    message = "Booking must end after it starts."
    status = 422


class ResourceNotFound(LabBookError):
    code = "RESOURCE_NOT_FOUND"
    message = "Equipment not found."
    status = 404


class BookingNotFound(LabBookError):
    code = "BOOKING_NOT_FOUND"
    message = "Booking not found."
    status = 404


class BookingConflict(LabBookError):
    code = "BOOKING_CONFLICT"
    message = "Time slot is already booked. Please pick another time."
    status = 409

    def __init__(self, conflicting_bookings, message: str | None = None):
        super().__init__(message)
        self.conflicting_bookings = list(conflicting_bookings)


class InvalidStatusTransition(LabBookError):
    code = "INVALID_STATUS_TRANSITION"
    message = "Booking status cannot change that way."
    status = 422


class InvalidToken(LabBookError):
    code = "INVALID_TOKEN"
    message = "Your session is invalid or has expired. Please log in again."
    status = 401


class StorageUnavailable(LabBookError):
    code = "STORAGE_UNAVAILABLE"
    message = "Service temporarily unavailable. Try again shortly."
    status = 503
    retryable = True
