"""
Payment ORM model. Persistence detail only; rules live in domain.payment.entity.
"""
from sqlalchemy import (
    BigInteger, Column, Integer, String, DateTime, Text, JSON, Index,
)
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)

    payment_code = Column(String(32), unique=True, nullable=False, comment="Entity code, PG prefix")
    idempotency_key = Column(String(128), unique=True, nullable=True, comment="Caller supplied idempotency key")

    campaign_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, comment="Buyer user id")
    creator_id = Column(String(64), nullable=False, index=True, comment="Tenant (campaign owner) id")

    # centavos
    amount = Column(BigInteger, nullable=False)
    tax_seller = Column(BigInteger, nullable=True)
    tax_platform = Column(BigInteger, nullable=True)
    amount_received = Column(BigInteger, nullable=True)
    numbers_quantity = Column(Integer, nullable=False, default=1)

    payment_method = Column(String(20), nullable=False, comment="PIX/CREDIT_CARD/...")
    payment_processor = Column(String(50), nullable=True, comment="Gateway type that handled it")
    processor_transaction_id = Column(String(128), unique=True, nullable=True)
    gateway_id = Column(String(64), nullable=True)

    status = Column(String(20), nullable=False, default="PENDING", index=True)

    purchase_at = Column(DateTime(timezone=True), nullable=False)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="Set for PIX only")

    # masked at write time
    customer_name = Column(String(120), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_document = Column(String(32), nullable=True)
    customer_phone = Column(String(32), nullable=True)

    pix_code = Column(Text, nullable=True)
    pix_qr_code = Column(Text, nullable=True)
    processor_response = Column(JSON, nullable=True, comment="code/message/reference_id")
    failure_reason = Column(Text, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True)

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
        Index("ix_payments_duplicate_guard", "campaign_id", "customer_id", "creator_id", "amount", "created_at"),
        Index("ix_payments_pix_sweep", "payment_method", "status", "expires_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, payment_code='{self.payment_code}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
