"""Machine-to-machine client model"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from qodari_iam.core.database import Base
from qodari_iam.models._columns import created_at_column, updated_at_column, uuid_pk


class ApiClient(Base):
    """Principal for the client-credentials grant; distinct from User"""

    __tablename__ = "api_clients"

    id = uuid_pk()
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    client_id = Column(String(255), unique=True, nullable=False, index=True)
    client_secret_hash = Column(Text, nullable=False)
    status = Column(String(20), default="active", nullable=False)
    access_token_exp = Column(Integer, default=600, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    roles = relationship("ApiClientRole", back_populates="api_client", cascade="all, delete-orphan")

    __table_args__ = (
        Index("api_clients_account_idx", "account_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self):
        return f"<ApiClient(id={self.id}, client_id='{self.client_id}')>"
