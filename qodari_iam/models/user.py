"""User model"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from qodari_iam.core.database import Base
from qodari_iam.models._columns import created_at_column, updated_at_column, uuid_pk


class User(Base):
    """Interactive principal belonging to one account"""

    __tablename__ = "users"

    id = uuid_pk()
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    first_name = Column(String(45), nullable=False, default="")
    last_name = Column(String(45), nullable=False, default="")
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(45), nullable=True)
    avatar = Column(Text, nullable=True)
    status = Column(String(20), default="active", nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    last_login_at = Column(DateTime(timezone=True))
    last_login_ip = Column(String(45))
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True))
    password_reset_token = Column(String(255), nullable=True, index=True)
    password_reset_expires = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    account = relationship("Account")
    roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("account_id", "email", name="user_account_idx"),
        Index("idx_users_account", "account_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', is_admin={self.is_admin})>"

    def to_dict(self):
        """Public representation (no credential material)"""
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "avatar": self.avatar,
            "isAdmin": self.is_admin,
            "status": self.status,
        }
