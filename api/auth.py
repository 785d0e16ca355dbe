"""
Authentication blueprint:
- POST /auth/register
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- GET  /auth/me

- argon2 password hashing (utils.security)
- short-lived access tokens and persisted, single-use refresh tokens
  (services.tokens.TokenManager); a refresh rotates the pair
"""
from __future__ import annotations

from flask import Blueprint, request, jsonify, g, abort

from api import get_storage, get_tokens
from models.user import User, UserRole
from models.schemas.auth import RefreshSchema, LogoutSchema
from models.schemas.user import UserCreateSchema, UserOutSchema, UserLoginSchema
from services.clock import utcnow
from utils.decorators import jwt_required
from utils.security import hash_password, verify_password

bp = Blueprint("auth", __name__, url_prefix="/auth")

user_create_schema = UserCreateSchema()
user_out_schema = UserOutSchema()
user_login_schema = UserLoginSchema()
refresh_schema = RefreshSchema()
logout_schema = LogoutSchema()


def session_payload(session) -> dict:
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "token_type": "bearer",
        "expires_in": session.expires_in,
    }


@bp.post("/register")
def register():
    """
    Register a new lab member and start a session.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            email: { type: string }
            password: { type: string }
            first_name: { type: string }
            last_name: { type: string }
            lab_affiliation: { type: string }
    responses:
      201:
        description: Created (returns user and tokens)
      409:
        description: Email already registered
      422:
        description: Validation error
    """
    payload = request.get_json(silent=True) or {}
    data = user_create_schema.load(payload)

    storage = get_storage()
    session = storage.get_session()
    if session.query(User).filter(User.email == data["email"]).first():
        abort(409, description="Email already registered")

    user = User(
        email=data["email"],
        password_hash=hash_password(data["password"]),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        lab_affiliation=data.get("lab_affiliation"),
        role=UserRole.GRAD_STUDENT,
        is_active=True,
    )
    storage.new(user)
    storage.save()

    tokens = get_tokens().issue_session(user.id)
    return jsonify({"data": user_out_schema.dump(user), **session_payload(tokens)}), 201


@bp.post("/login")
def login():
    """
    Login: return access_token and refresh_token
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             email: { type: string }
             password: { type: string }
    responses:
      200:
        description: OK (returns tokens)
      401:
        description: Unauthorized
    """
    payload = request.get_json(silent=True) or {}
    data = user_login_schema.load(payload)

    storage = get_storage()
    session = storage.get_session()
    user: User = session.query(User).filter(User.email == data["email"]).first()
    if not user or not verify_password(data["password"], user.password_hash):
        abort(401, description="Invalid email or password")
    if not user.is_active:
        abort(401, description="Account is deactivated")

    user.last_active = utcnow()
    storage.new(user)
    storage.save()

    tokens = get_tokens().issue_session(user.id)
    return jsonify({"data": user_out_schema.dump(user), **session_payload(tokens)}), 200


@bp.post("/refresh")
def refresh():
    """
    Use a refresh token to obtain a new access and refresh token (rotation).
    The presented refresh token is spent; replaying it fails with 401.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             refresh_token: { type: string }
    responses:
      200:
        description: OK (returns new tokens)
      401:
        description: Invalid, expired or already used refresh token
    """
    payload = request.get_json(silent=True) or {}
    data = refresh_schema.load(payload)
    tokens = get_tokens().rotate(data["refresh_token"])
    return jsonify(session_payload(tokens)), 200


@bp.post("/logout")
def logout():
    """
    Logout: revoke the given refresh token (idempotent)
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             refresh_token: { type: string }
    responses:
      204:
        description: ""
    """
    payload = request.get_json(silent=True) or {}
    data = logout_schema.load(payload)
    get_tokens().revoke(data.get("refresh_token"))
    return ("", 204)


@bp.get("/me")
@jwt_required()
def me():
    """
    Get current user info.
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: OK
      401:
        description: Unauthorized
    """
    return jsonify({"data": user_out_schema.dump(g.current_user)}), 200
