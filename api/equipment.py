from __future__ import annotations

from flask import Blueprint, request, jsonify, abort
from sqlalchemy import or_, func

from api import get_storage, get_bookings
from models.booking import Booking
from models.equipment import Equipment
from models.schemas.booking import BookingOutSchema
from models.schemas.equipment import (
    EquipmentCreateSchema,
    EquipmentUpdateSchema,
    EquipmentOutSchema,
    ScheduleQuerySchema,
)
from utils.decorators import jwt_required, roles_required

bp = Blueprint("equipment", __name__)

EQUIPMENT_EDITORS = ["PI_LAB_MANAGER", "POSTDOC_STAFF"]

equipment_create_schema = EquipmentCreateSchema()
equipment_update_schema = EquipmentUpdateSchema()
equipment_out_schema = EquipmentOutSchema()
equipment_list_out_schema = EquipmentOutSchema(many=True)
schedule_query_schema = ScheduleQuerySchema()
bookings_out_schema = BookingOutSchema(many=True)


def _get_or_404(equipment_id: str) -> Equipment:
    equipment = get_storage().get_equipment(equipment_id)
    if not equipment:
        abort(404)
    return equipment


@bp.get("/equipment")
@jwt_required()
def list_equipment():
    """
    List equipment with booking counts
    ---
    tags:
      - Equipment
    security:
      - Bearer: []
    parameters:
      - in: query
        name: available
        type: boolean
      - in: query
        name: q
        type: string
        description: "Case-insensitive substring search on name, model and location"
    responses:
      200:
        description: List of equipment
    """
    session = get_storage().get_session()
    query = session.query(Equipment)

    available = request.args.get("available")
    if available is not None:
        query = query.filter(Equipment.is_available.is_(available.lower() in ("1", "true", "yes")))
    q = request.args.get("q")
    if q:
        qnorm = f"%{q.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Equipment.name).like(qnorm),
                func.lower(Equipment.model).like(qnorm),
                func.lower(Equipment.location).like(qnorm),
            )
        )
    rows = query.order_by(Equipment.name.asc()).all()

    counts = dict(
        session.query(Booking.equipment_id, func.count(Booking.id))
        .filter(Booking.equipment_id.in_([e.id for e in rows]))
        .group_by(Booking.equipment_id)
        .all()
    ) if rows else {}

    data = equipment_list_out_schema.dump(rows)
    for item in data:
        item["booking_count"] = counts.get(item["id"], 0)
    return jsonify({"data": data, "meta": {"total": len(data)}})


@bp.get("/equipment/<equipment_id>")
@jwt_required()
def get_equipment(equipment_id: str):
    """
    Get a single piece of equipment
    ---
    tags:
      - Equipment
    security:
      - Bearer: []
    parameters:
      - in: path
        name: equipment_id
        type: string
        required: true
    responses:
      200:
        description: Equipment found
      404:
        description: Not found
    """
    return jsonify({"data": equipment_out_schema.dump(_get_or_404(equipment_id))})


@bp.post("/equipment")
@roles_required(EQUIPMENT_EDITORS)
def create_equipment():
    """
    Register a new piece of equipment
    ---
    tags:
      - Equipment
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
            name: { type: string, maxLength: 255 }
            model: { type: string }
            serial_number: { type: string }
            location: { type: string }
            description: { type: string }
            maintenance_notes: { type: string }
            requires_training: { type: boolean, default: false }
            booking_duration: { type: integer, minimum: 1, default: 60 }
    responses:
      201:
        description: Created
      409:
        description: Serial number already registered
      422:
        description: Validation error
    """
    storage = get_storage()
    payload = request.get_json(silent=True) or {}
    data = equipment_create_schema.load(payload)

    if data.get("serial_number"):
        existing = (
            storage.get_session()
            .query(Equipment)
            .filter(Equipment.serial_number == data["serial_number"])
            .first()
        )
        if existing:
            abort(409, description="Equipment with this serial number already exists.")

    equipment = Equipment(is_available=True, **data)
    storage.new(equipment)
    storage.save()
    return jsonify({"data": equipment_out_schema.dump(equipment)}), 201


@bp.patch("/equipment/<equipment_id>")
@roles_required(EQUIPMENT_EDITORS)
def update_equipment(equipment_id: str):
    """
    Update equipment (partial)
    ---
    tags:
      - Equipment
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: path
        name: equipment_id
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
    responses:
      200:
        description: Updated
      404:
        description: Not found
      422:
        description: Validation error
    """
    storage = get_storage()
    equipment = _get_or_404(equipment_id)
    payload = request.get_json(silent=True) or {}
    data = equipment_update_schema.load(payload)

    for field, value in data.items():
        setattr(equipment, field, value)

    storage.new(equipment)
    storage.save()
    return jsonify({"data": equipment_out_schema.dump(equipment)})


@bp.delete("/equipment/<equipment_id>")
@roles_required(["PI_LAB_MANAGER"])
def delete_equipment(equipment_id: str):
    """
    Delete equipment and its booking history - lab manager
    ---
    tags:
      - Equipment
    security:
      - Bearer: []
    parameters:
      - in: path
        name: equipment_id
        type: string
        required: true
    responses:
      204:
        description: Deleted
      404:
        description: Not found
    """
    storage = get_storage()
    equipment = _get_or_404(equipment_id)
    storage.delete(equipment)
    storage.save()
    return ("", 204)


@bp.get("/equipment/<equipment_id>/schedule")
@jwt_required()
def equipment_schedule(equipment_id: str):
    """
    Active bookings for one piece of equipment, by start time
    ---
    tags:
      - Equipment
    security:
      - Bearer: []
    parameters:
      - in: path
        name: equipment_id
        type: string
        required: true
      - in: query
        name: start_date
        type: string
        format: date-time
        description: "Defaults to now"
      - in: query
        name: end_date
        type: string
        format: date-time
        description: "Defaults to start_date + 7 days"
    responses:
      200:
        description: Bookings in the window
      404:
        description: Equipment not found
    """
    query = schedule_query_schema.load(request.args)
    bookings = get_bookings().schedule(equipment_id, query["start_date"], query["end_date"])
    return jsonify({"data": bookings_out_schema.dump(bookings)})
