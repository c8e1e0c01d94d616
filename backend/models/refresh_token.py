"""Refresh token storage model."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.database import Base


class RefreshToken(Base):
    """
    One row per issued refresh token.

    The primary key is the token id embedded in the signed token. Only an
    argon2 digest of the full signed string is kept, together with the device
    fingerprint (truncated IP and exact User-Agent) captured at issuance.

    ``is_active`` only ever goes from True to False, and ``revoked_at`` is
    stamped in the same statement. ``expires_at`` is never modified; rows are
    soft-revoked and retained.
    """

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(255), nullable=False)  # argon2 encoded hash
    ip_fragment = Column(String(45), nullable=False)  # truncated IPv4 or IPv6
    user_agent = Column(Text, nullable=False, default="")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    last_used = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="refresh_tokens")

    # The sweeper filters on (is_active, expires_at)
    __table_args__ = (
        Index("ix_refresh_tokens_active_expires", "is_active", "expires_at"),
        Index("ix_refresh_tokens_user_active", "user_id", "is_active"),
    )

    def __repr__(self):
        return f"<RefreshToken(id={self.id}, user_id={self.user_id}, active={self.is_active})>"
