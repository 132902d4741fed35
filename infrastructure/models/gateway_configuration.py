"""
Gateway configuration ORM model.
"""
from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String, Text, text
from datetime import datetime, timezone

from .base import Base


class GatewayConfigurationModel(Base):
    __tablename__ = "gateway_configurations"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True, comment="Owning campaign creator")
    gateway_type = Column(String(40), nullable=False)
    name = Column(String(120), nullable=False)
    status = Column(String(30), nullable=False, default="PENDING_VALIDATION")
    is_default = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    credentials = Column(Text, nullable=True, comment="Fernet token with the credential JSON")
    settings = Column(JSON, nullable=True)
    last_validated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_gateway_configurations_tenant_status", "tenant_id", "status"),
    )
