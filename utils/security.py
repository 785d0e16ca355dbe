"""
security helpers:
- Argon2 password hashing via argon2-cffi
- JWT signing/verification via PyJWT
- JTI generation for token identifiers

sign()/verify() take the current time explicitly so expiry follows the
caller's clock rather than the wall clock.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Dict, Any

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import VerificationError, InvalidHashError

ph = PasswordHasher()


def hash_password(password: str) -> str:
    """Hash a plaintext password using Argon2
    """
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """ Verify a plaintext password using argon2
    """
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def generate_jti() -> str:
    """Generate a unique, unguessable JTI (JWT ID).
    """
    return uuid.uuid4().hex


def sign(payload: Dict[str, Any], secret: str, ttl: timedelta, now: datetime,
         algorithm: str = "HS256") -> str:
    """Sign `payload` with iat/exp claims derived from `now` and `ttl`."""
    claims = dict(payload)
    claims["iat"] = int(now.timestamp())
    claims["exp"] = int((now + ttl).timestamp())
    return jwt.encode(claims, secret, algorithm=algorithm)


def verify(token: str, secret: str, now: datetime, algorithm: str = "HS256") -> Dict[str, Any]:
    """
    Check signature and expiry of a JWT and return its claims.
    Raises jwt.ExpiredSignatureError once `now` reaches exp, and
    jwt.InvalidTokenError for anything else wrong with the token.
    """
    decoded = jwt.decode(
        token,
        secret,
        algorithms=[algorithm],
        options={"require": ["exp", "iat", "sub"], "verify_exp": False, "verify_iat": False},
    )
    if int(decoded["exp"]) <= int(now.timestamp()):
        raise jwt.ExpiredSignatureError("Signature has expired")
    return decoded
