from __future__ import annotations
from functools import wraps
from flask import request, g, abort

from api import get_storage, get_tokens


def _bearer_token() -> str:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        abort(401, description="Missing or invalid Authorization header")
    return auth.split(" ", 1)[1].strip()


def jwt_required():
    """
    Require a valid access token. Invalid/expired tokens raise InvalidToken,
    which the error handlers render as 401 INVALID_TOKEN.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            claims = get_tokens().verify_access(_bearer_token())
            user = get_storage().get_user(claims.user_id)
            if not user or not user.is_active:
                abort(401, description="User not found or deactivated")
            g.current_user = user
            g.current_user_role = claims.role
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def roles_required(required_roles: list[str]):
    """
    Allow access if the user's role is one of the required roles.
    The role comes from the stored user, so a demotion applies immediately.
    """
    req = set(required_roles or [])

    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, **kwargs):
            role = getattr(g.current_user.role, "value", g.current_user.role)
            if role not in req:
                abort(403, description="Insufficient role")
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def is_manager(user) -> bool:
    return getattr(user.role, "value", user.role) == "PI_LAB_MANAGER"
