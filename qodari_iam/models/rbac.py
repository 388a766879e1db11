"""Role-based access control models"""

from sqlalchemy import Column, ForeignKey, Index, PrimaryKeyConstraint, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from qodari_iam.core.database import Base
from qodari_iam.models._columns import created_at_column, updated_at_column, uuid_pk


class Role(Base):
    """Role scoped to (account, application)"""

    __tablename__ = "roles"

    id = uuid_pk()
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(45), nullable=False)
    slug = Column(String(45), nullable=False)
    description = Column(Text, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    permissions = relationship("RolePermission", back_populates="role", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("account_id", "application_id", "slug", name="roles_account_app_slug_uniq"),
        Index("idx_roles_application", "application_id"),
    )


class Permission(Base):
    """(resource, action) pair scoped to (account, application)"""

    __tablename__ = "permissions"

    id = uuid_pk()
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(45), nullable=False)
    resource = Column(String(45), nullable=False)
    action = Column(String(45), nullable=False)
    description = Column(Text, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        UniqueConstraint(
            "account_id", "application_id", "resource", "action",
            name="permissions_account_app_res_act_uniq",
        ),
    )

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


class RolePermission(Base):
    __tablename__ = "role_permissions"

    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    permission_id = Column(String(36), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    created_at = created_at_column()

    role = relationship("Role", back_populates="permissions")
    permission = relationship("Permission")

    __table_args__ = (
        PrimaryKeyConstraint("role_id", "permission_id"),
    )


class UserRole(Base):
    __tablename__ = "user_roles"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    created_at = created_at_column()

    user = relationship("User", back_populates="roles")
    role = relationship("Role")

    __table_args__ = (
        PrimaryKeyConstraint("user_id", "role_id"),
        Index("idx_user_roles_role", "role_id"),
    )


class ApiClientRole(Base):
    __tablename__ = "api_client_roles"

    api_client_id = Column(String(36), ForeignKey("api_clients.id", ondelete="CASCADE"), nullable=False)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    created_at = created_at_column()

    api_client = relationship("ApiClient", back_populates="roles")
    role = relationship("Role")

    __table_args__ = (
        PrimaryKeyConstraint("api_client_id", "role_id"),
        Index("api_client_roles_role_idx", "role_id"),
    )
