from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from flask import Blueprint, request, jsonify, g, abort

from api import get_storage, get_bookings
from models.booking import Booking, BookingStatus
from models.schemas.booking import (
    BookingCreateSchema,
    BookingCheckSchema,
    BookingUpdateSchema,
    BookingOutSchema,
)
from services.bookings import BookingRequest, BookingChanges
from services.clock import as_utc
from utils.decorators import jwt_required, is_manager

bp = Blueprint("bookings", __name__)

booking_create_schema = BookingCreateSchema()
booking_check_schema = BookingCheckSchema()
booking_update_schema = BookingUpdateSchema()
booking_out_schema = BookingOutSchema()
bookings_out_schema = BookingOutSchema(many=True)

MAX_LIMIT = 100


def parse_pagination() -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", "1"))
        limit = int(request.args.get("limit", "50"))
        page = max(page, 1)
        limit = max(1, min(limit, MAX_LIMIT))
        return page, limit
    except ValueError:
        abort(400, description="page and limit must be integers")


def parse_datetime_param(name: str) -> Optional[datetime]:
    val = request.args.get(name)
    if not val:
        return None
    try:
        return as_utc(datetime.fromisoformat(val))
    except ValueError:
        abort(400, description=f"Invalid datetime for {name}. Use ISO-8601, e.g. 2025-01-01T09:00")


def parse_status(raw: Optional[str]) -> Optional[BookingStatus]:
    if not raw:
        return None
    try:
        return BookingStatus(raw.upper())
    except ValueError:
        allowed = [s.value for s in BookingStatus]
        abort(400, description=f"status must be one of {allowed}")


def _owned_booking_or_abort(booking_id: str) -> Booking:
    """Only the booking owner or a lab manager may change a booking."""
    booking = get_storage().get_booking(booking_id)
    if not booking:
        abort(404)
    if booking.user_id != g.current_user.id and not is_manager(g.current_user):
        abort(403, description="Only the booking owner or a lab manager can change this booking")
    return booking


@bp.get("/bookings")
@jwt_required()
def list_bookings():
    """
    List bookings with filters
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    parameters:
      - in: query
        name: equipment_id
        type: string
      - in: query
        name: user_id
        type: string
      - in: query
        name: status
        type: string
        enum: [SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED]
      - in: query
        name: start_from
        type: string
        format: date-time
      - in: query
        name: start_to
        type: string
        format: date-time
      - in: query
        name: page
        type: integer
        default: 1
      - in: query
        name: limit
        type: integer
        default: 50
    responses:
      200:
        description: List of bookings
    """
    session = get_storage().get_session()
    page, limit = parse_pagination()

    query = session.query(Booking)
    if request.args.get("equipment_id"):
        query = query.filter(Booking.equipment_id == request.args["equipment_id"])
    if request.args.get("user_id"):
        query = query.filter(Booking.user_id == request.args["user_id"])
    status = parse_status(request.args.get("status"))
    if status:
        query = query.filter(Booking.status == status)
    start_from = parse_datetime_param("start_from")
    if start_from:
        query = query.filter(Booking.start_time >= start_from)
    start_to = parse_datetime_param("start_to")
    if start_to:
        query = query.filter(Booking.start_time <= start_to)

    total = query.count()
    rows = (
        query.order_by(Booking.start_time.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify(
        {
            "data": bookings_out_schema.dump(rows),
            "meta": {"page": page, "limit": limit, "total": total},
        }
    )


@bp.get("/bookings/<booking_id>")
@jwt_required()
def get_booking(booking_id: str):
    """
    Get a single booking
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    parameters:
      - in: path
        name: booking_id
        type: string
        required: true
    responses:
      200:
        description: Booking found
      404:
        description: Not found
    """
    booking = get_storage().get_booking(booking_id)
    if not booking:
        abort(404)
    return jsonify({"data": booking_out_schema.dump(booking)})


@bp.post("/bookings/check")
@jwt_required()
def check_booking():
    """
    Check whether an interval is free without booking it
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            equipment_id: { type: string }
            start_time: { type: string, format: date-time }
            end_time: { type: string, format: date-time }
            exclude_booking_id: { type: string }
    responses:
      200:
        description: Conflict report (conflict flag and every overlapping booking)
      404:
        description: Equipment not found
      422:
        description: Invalid interval
    """
    payload = request.get_json(silent=True) or {}
    data = booking_check_schema.load(payload)
    result = get_bookings().check_conflict(
        data["equipment_id"],
        data["start_time"],
        data["end_time"],
        exclude_booking_id=data.get("exclude_booking_id"),
    )
    return jsonify(
        {
            "data": {
                "conflict": result.conflict,
                "conflicting_bookings": bookings_out_schema.dump(result.conflicting_bookings),
            }
        }
    )


@bp.post("/bookings")
@jwt_required()
def create_booking():
    """
    Book equipment for [start_time, end_time)
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            equipment_id: { type: string }
            start_time: { type: string, format: date-time }
            end_time: { type: string, format: date-time }
            purpose: { type: string, maxLength: 255 }
            notes: { type: string }
            is_recurring: { type: boolean, default: false }
            recurring_pattern: { type: string }
    responses:
      201:
        description: Created
      404:
        description: Equipment not found
      409:
        description: Overlaps an existing booking (details.conflicts lists them) or equipment unavailable
      422:
        description: Validation error
    """
    payload = request.get_json(silent=True) or {}
    data = booking_create_schema.load(payload)

    equipment = get_storage().get_equipment(data["equipment_id"])
    if equipment is not None and not equipment.is_available:
        abort(409, description="Equipment is currently unavailable for booking")

    booking = get_bookings().create_booking(
        BookingRequest(
            resource_id=data["equipment_id"],
            owner_id=g.current_user.id,
            start_time=data["start_time"],
            end_time=data["end_time"],
            purpose=data.get("purpose"),
            notes=data.get("notes"),
            is_recurring=data.get("is_recurring", False),
            recurring_pattern=data.get("recurring_pattern"),
        )
    )
    return jsonify({"data": booking_out_schema.dump(booking)}), 201


@bp.patch("/bookings/<booking_id>")
@jwt_required()
def update_booking(booking_id: str):
    """
    Update a booking (partial); time changes are re-checked for conflicts
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: path
        name: booking_id
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            start_time: { type: string, format: date-time }
            end_time: { type: string, format: date-time }
            purpose: { type: string }
            notes: { type: string }
            status:
              type: string
              enum: [SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED]
    responses:
      200:
        description: Updated
      403:
        description: Not the owner
      404:
        description: Not found
      409:
        description: New interval overlaps another booking
      422:
        description: Validation error or invalid status transition
    """
    _owned_booking_or_abort(booking_id)
    payload = request.get_json(silent=True) or {}
    data = booking_update_schema.load(payload)
    booking = get_bookings().update_booking(booking_id, BookingChanges(**data))
    return jsonify({"data": booking_out_schema.dump(booking)})


@bp.post("/bookings/<booking_id>/cancel")
@jwt_required()
def cancel_booking(booking_id: str):
    """
    Cancel a booking; its interval becomes free again
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    parameters:
      - in: path
        name: booking_id
        type: string
        required: true
    responses:
      200:
        description: Cancelled
      403:
        description: Not the owner
      404:
        description: Not found
      422:
        description: Booking already completed
    """
    _owned_booking_or_abort(booking_id)
    booking = get_bookings().cancel_booking(booking_id)
    return jsonify({"data": booking_out_schema.dump(booking)})


@bp.delete("/bookings/<booking_id>")
@jwt_required()
def delete_booking(booking_id: str):
    """
    Delete a booking record
    ---
    tags:
      - Bookings
    security:
      - Bearer: []
    parameters:
      - in: path
        name: booking_id
        type: string
        required: true
    responses:
      204:
        description: Deleted
      403:
        description: Not the owner
      404:
        description: Not found
    """
    storage = get_storage()
    booking = _owned_booking_or_abort(booking_id)
    storage.delete(booking)
    storage.save()
    return ("", 204)
