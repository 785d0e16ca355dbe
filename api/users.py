from __future__ import annotations

from typing import Tuple

from flask import Blueprint, request, jsonify, g, abort
from sqlalchemy import or_, func

from api import get_storage, get_tokens
from models.user import User, UserRole
from models.schemas.user import UserOutSchema, UserUpdateSchema, PasswordChangeSchema
from utils.decorators import jwt_required, roles_required
from utils.security import hash_password, verify_password

MAX_LIMIT = 100

bp = Blueprint("users", __name__)

user_out_schema = UserOutSchema()
user_list_out_schema = UserOutSchema(many=True)
user_update_schema = UserUpdateSchema()
password_change_schema = PasswordChangeSchema()


def parse_pagination() -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", "1"))
        limit = int(request.args.get("limit", "20"))
        page = max(page, 1)
        limit = max(1, min(limit, MAX_LIMIT))
        return page, limit
    except ValueError:
        abort(400, description="page and limit must be integers")


def parse_role(raw: str | None) -> UserRole | None:
    if not raw:
        return None
    try:
        return UserRole(raw.upper())
    except ValueError:
        allowed = [r.value for r in UserRole]
        abort(400, description=f"role must be one of {allowed}")


@bp.get("/users")
@jwt_required()
def list_users():
    """
    List lab members
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: query
        name: role
        type: string
        enum: [PI_LAB_MANAGER, POSTDOC_STAFF, GRAD_STUDENT, UNDERGRAD_TECH]
      - in: query
        name: search
        type: string
        description: "Case-insensitive substring match on names and email"
      - in: query
        name: page
        type: integer
        default: 1
      - in: query
        name: limit
        type: integer
        default: 20
    responses:
      200: { description: OK }
    """
    session = get_storage().get_session()
    page, limit = parse_pagination()

    query = session.query(User)
    role = parse_role(request.args.get("role"))
    if role:
        query = query.filter(User.role == role)
    search = request.args.get("search")
    if search:
        qnorm = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(User.first_name).like(qnorm),
                func.lower(User.last_name).like(qnorm),
                func.lower(User.email).like(qnorm),
            )
        )

    total = query.count()
    rows = (
        query.order_by(User.last_name.asc(), User.first_name.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify(
        {
            "data": user_list_out_schema.dump(rows),
            "meta": {"page": page, "limit": limit, "total": total}
        }
    )


@bp.get("/users/<user_id>")
@jwt_required()
def get_user(user_id: str):
    """
    Get one lab member
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: string
        required: true
    responses:
      200: { description: OK }
      404: { description: Not found }
    """
    user = get_storage().get_user(user_id)
    if not user:
        abort(404)
    return jsonify({"data": user_out_schema.dump(user)})


@bp.patch("/users/<user_id>")
@roles_required(["PI_LAB_MANAGER"])
def update_user(user_id: str):
    """
    Update a lab member's profile, role or active flag - lab manager
    ---
    tags:
      - Users
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: path
        name: user_id
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            first_name: { type: string }
            last_name: { type: string }
            lab_affiliation: { type: string }
            role:
              type: string
              enum: [PI_LAB_MANAGER, POSTDOC_STAFF, GRAD_STUDENT, UNDERGRAD_TECH]
            is_active: { type: boolean }
    responses:
      200: { description: OK }
      404: { description: Not found }
      422: { description: Validation error }
    """
    storage = get_storage()
    user = storage.get_user(user_id)
    if not user:
        abort(404)

    payload = request.get_json(silent=True) or {}
    data = user_update_schema.load(payload)

    for field in ["first_name", "last_name", "lab_affiliation", "role", "is_active"]:
        if field in data:
            setattr(user, field, data[field])

    storage.new(user)
    storage.save()
    if data.get("is_active") is False:
        get_tokens().revoke_all(user.id)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.post("/users/change-password")
@jwt_required()
def change_password():
    """
    Change own password; signs out every other session
    ---
    tags:
      - Users
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            current_password: { type: string }
            new_password: { type: string }
    responses:
      204: { description: Changed }
      400: { description: Current password is incorrect }
    """
    payload = request.get_json(silent=True) or {}
    data = password_change_schema.load(payload)

    user = g.current_user
    if not verify_password(data["current_password"], user.password_hash):
        abort(400, description="Current password is incorrect")

    storage = get_storage()
    user.password_hash = hash_password(data["new_password"])
    storage.new(user)
    storage.save()
    get_tokens().revoke_all(user.id)
    return ("", 204)


@bp.delete("/users/<user_id>")
@roles_required(["PI_LAB_MANAGER"])
def deactivate_user(user_id: str):
    """
    Deactivate a lab member and revoke their sessions - lab manager
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: string
        required: true
    responses:
      204: { description: Deactivated }
      404: { description: Not found }
      409: { description: Cannot deactivate yourself }
    """
    storage = get_storage()
    user = storage.get_user(user_id)
    if not user:
        abort(404)
    if user.id == g.current_user.id:
        abort(409, description="You cannot deactivate your own account")

    user.is_active = False
    storage.new(user)
    storage.save()
    get_tokens().revoke_all(user.id)
    return ("", 204)
