"""
Access/refresh token lifecycle.

- Access tokens: short-lived JWTs over {sub, email, role}; never stored,
  cannot be revoked before they expire.
- Refresh tokens: long-lived JWTs over {sub, jti}, persisted one row per
  token. Single use: rotation deletes the row, logout deletes the row,
  and a row past expires_at is rejected even if it has not been purged.

Access and refresh tokens are signed with different secrets.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable

import jwt

from models.refresh_token import RefreshToken
from services.clock import as_utc, utcnow
from services.errors import InvalidToken
from utils.security import generate_jti, sign, verify

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    email: str
    role: str


@dataclass(frozen=True)
class Session:
    user_id: str
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


class TokenManager:
    def __init__(
        self,
        store,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm
        self.clock = clock

    @classmethod
    def from_config(cls, store, config, clock: Callable[[], datetime] = utcnow) -> "TokenManager":
        return cls(
            store,
            access_secret=config["JWT_SECRET"],
            refresh_secret=config["JWT_REFRESH_SECRET"],
            access_ttl=config["ACCESS_TOKEN_EXPIRES"],
            refresh_ttl=config["REFRESH_TOKEN_EXPIRES"],
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            clock=clock,
        )

    def issue_session(self, user_id: str) -> Session:
        """Mint an access token and a persisted refresh token for `user_id`."""
        user = self.store.get_user(user_id)
        if user is None or not user.is_active:
            logger.warning("Session refused for unknown or inactive user %s", user_id)
            raise InvalidToken()

        now = self.clock()
        role = getattr(user.role, "value", user.role)
        access_token = sign(
            {"sub": str(user.id), "email": user.email, "role": role, "type": ACCESS},
            self.access_secret, self.access_ttl, now, self.algorithm,
        )
        refresh_token = sign(
            {"sub": str(user.id), "jti": generate_jti(), "type": REFRESH},
            self.refresh_secret, self.refresh_ttl, now, self.algorithm,
        )
        self.store.insert_refresh_token(
            RefreshToken(token=refresh_token, user_id=str(user.id), expires_at=now + self.refresh_ttl)
        )
        logger.info("Session issued for user %s", user.id)
        return Session(
            user_id=str(user.id),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def rotate(self, refresh_token: str) -> Session:
        """
        Trade a live refresh token for a new session; the old token is spent.

        The new pair is issued before the old row is deleted, so a crash in
        between leaves the old token usable (until it expires) instead of
        locking the user out. Deleting the old row decides concurrent
        rotations: whoever deletes it wins, everyone else gets InvalidToken.
        """
        claims = self._decode(refresh_token, self.refresh_secret, REFRESH)
        record = self.store.find_refresh_token(refresh_token)
        if record is None:
            logger.warning("Refresh rejected: token not found (spent or revoked)")
            raise InvalidToken()
        if as_utc(record.expires_at) <= self.clock():
            logger.warning("Refresh rejected: stored token expired for user %s", record.user_id)
            raise InvalidToken()
        if str(record.user_id) != str(claims["sub"]):
            logger.warning("Refresh rejected: subject mismatch for user %s", record.user_id)
            raise InvalidToken()

        session = self.issue_session(record.user_id)
        if not self.store.delete_refresh_token(refresh_token):
            self.store.delete_refresh_token(session.refresh_token)
            logger.warning("Refresh rejected: token already rotated for user %s", record.user_id)
            raise InvalidToken()
        logger.info("Refresh token rotated for user %s", record.user_id)
        return session

    def revoke(self, refresh_token: str) -> None:
        """Delete the token's record if present; absent tokens are fine."""
        if not refresh_token:
            return
        if self.store.delete_refresh_token(refresh_token):
            logger.info("Refresh token revoked")

    def revoke_all(self, user_id: str) -> int:
        count = self.store.delete_refresh_tokens_for_user(user_id)
        logger.info("Revoked %d refresh tokens for user %s", count, user_id)
        return count

    def verify_access(self, access_token: str) -> AccessClaims:
        claims = self._decode(access_token, self.access_secret, ACCESS)
        return AccessClaims(user_id=claims["sub"], email=claims.get("email"), role=claims.get("role"))

    def purge_expired(self) -> int:
        """Physically remove expired refresh records."""
        count = self.store.purge_expired_refresh_tokens(self.clock())
        logger.info("Purged %d expired refresh tokens", count)
        return count

    def _decode(self, token: str, secret: str, expected_type: str) -> dict:
        if not token or not isinstance(token, str):
            raise InvalidToken()
        try:
            claims = verify(token, secret, self.clock(), self.algorithm)
        except jwt.ExpiredSignatureError as exc:
            logger.debug("%s token expired", expected_type)
            raise InvalidToken() from exc
        except jwt.InvalidTokenError as exc:
            logger.debug("%s token invalid: %s", expected_type, exc)
            raise InvalidToken() from exc
        if claims.get("type") != expected_type:
            raise InvalidToken()
        return claims
