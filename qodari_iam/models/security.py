"""Security-related persistence models."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import relationship

from qodari_iam.core.database import Base
from qodari_iam.models._columns import created_at_column, updated_at_column, uuid_pk


class AuthorizationCode(Base):
    """One-time authorization code; rejected forever once used."""

    __tablename__ = "authorization_codes"

    id = uuid_pk()
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(255), unique=True, nullable=False, index=True)
    scope = Column(Text, nullable=True)
    code_challenge = Column(String(255), nullable=True)
    code_challenge_method = Column(String(10), nullable=True)
    state = Column(String(255), nullable=True)
    redirect_uri = Column(String(255), nullable=True)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = created_at_column()

    __table_args__ = (
        Index("idx_authorization_codes_application", "application_id"),
        Index("idx_authorization_codes_expires_at", "expires_at"),
    )


class RefreshToken(Base):
    """Refresh token record for rotation/revocation. Only the hash is stored."""

    __tablename__ = "refresh_tokens"

    id = uuid_pk()
    family_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(255), unique=True, nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_reason = Column(String(32), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()

    user = relationship("User")

    __table_args__ = (
        Index("idx_refresh_tokens_hash_application", "token_hash", "application_id"),
        Index("idx_refresh_tokens_user_application", "user_id", "application_id"),
    )


class UserSession(Base):
    """Server-side session; the cookie only carries its id."""

    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = created_at_column()

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index("idx_sessions_user", "user_id"),
        Index("idx_sessions_expires_at", "expires_at"),
    )


class MfaPending(Base):
    """Outstanding email second-factor challenge; its id is the mfaToken."""

    __tablename__ = "mfa_pending"

    id = uuid_pk()
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    code_hash = Column(String(255), nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        Index("mfa_pending_user_idx", "user_id"),
        Index("mfa_pending_expires_idx", "expires_at"),
    )


class RateLimitCounter(Base):
    """Sliding-window request counter keyed by e.g. ``login:email:<email>``."""

    __tablename__ = "rate_limits"

    key = Column(String(255), primary_key=True)
    window_start = Column(DateTime, nullable=False, index=True)
    count = Column(Integer, default=1, nullable=False)
    created_at = created_at_column()
    updated_at = updated_at_column()
