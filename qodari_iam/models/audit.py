"""Audit log model for authentication and token events."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Index, JSON

from qodari_iam.core.database import Base
from qodari_iam.models._columns import created_at_column, uuid_pk


class AuditLog(Base):
    """Immutable audit events."""

    __tablename__ = "audit_logs"

    id = uuid_pk()
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    actor_type = Column(String(20), nullable=False, default="user")
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    api_client_id = Column(String(36), ForeignKey("api_clients.id", ondelete="SET NULL"), nullable=True)
    application_id = Column(String(36), ForeignKey("applications.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    resource = Column(String(100), nullable=True)
    resource_id = Column(String(255), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = created_at_column()

    __table_args__ = (
        Index("audit_account_idx", "account_id"),
        Index("audit_user_idx", "user_id"),
        Index("audit_created_idx", "created_at"),
    )
