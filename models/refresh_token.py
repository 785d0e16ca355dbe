"""
RefreshToken model: one row per live refresh token so tokens can be rotated and revoked.
Fields:
- token (unique) - the signed token string itself
- user_id (String(36)) - FK to users.id
- expires_at - checked on every use; expired rows linger until purged
- created_at (from BaseModel)
"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
from models.base_model import BaseModel, Base


class RefreshToken(BaseModel, Base):
    __tablename__ = "refresh_tokens"

    token = Column(String(512), nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_refresh_tokens_user", "user_id"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )

    def __repr__(self):
        return f"<RefreshToken user={self.user_id} expires_at={self.expires_at}>"
