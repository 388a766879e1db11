"""Tenant models: accounts and the OAuth applications they own"""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from qodari_iam.core.database import Base
from qodari_iam.models._columns import created_at_column, updated_at_column, uuid_pk


class Account(Base):
    """Tenant; its slug is the routing key in login URLs"""

    __tablename__ = "accounts"

    id = uuid_pk()
    name = Column(Text, nullable=False)
    slug = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)
    status = Column(String(20), default="active", nullable=False)
    created_at = created_at_column()
    updated_at = updated_at_column()

    applications = relationship("Application", back_populates="account", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<Account(id={self.id}, slug='{self.slug}')>"


class Application(Base):
    """OAuth client registered under one account"""

    __tablename__ = "applications"

    id = uuid_pk()
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    client_type = Column(String(20), nullable=False)
    client_id = Column(String(255), unique=True, nullable=False, index=True)
    client_secret = Column(Text, nullable=False)
    client_jwt_secret = Column(Text, nullable=False)
    home_url = Column(String(255), nullable=True)
    logout_url = Column(String(255), nullable=True)
    callback_urls = Column(JSON, nullable=False, default=list)
    status = Column(String(20), default="active", nullable=False)
    auth_code_exp = Column(Integer, default=300, nullable=False)
    access_token_exp = Column(Integer, default=900, nullable=False)
    refresh_token_exp = Column(Integer, default=604800, nullable=False)
    mfa_enabled = Column(Boolean, default=False, nullable=False)
    created_at = created_at_column()
    updated_at = updated_at_column()

    account = relationship("Account", back_populates="applications")

    __table_args__ = (
        UniqueConstraint("account_id", "slug", name="apps_account_slug_uniq"),
        Index("idx_applications_account", "account_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_public(self) -> bool:
        return self.client_type == "public"

    def __repr__(self):
        return f"<Application(id={self.id}, slug='{self.slug}', client_type='{self.client_type}')>"
