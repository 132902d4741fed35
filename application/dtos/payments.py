"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts are integers in centavos everywhere.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_serializer

from domain.payment.entity import Payment, PaymentMethod, PaymentStatus


class DTOBase(BaseModel):
    """Serializes datetimes as UTC with a trailing Z."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class CustomerData(DTOBase):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    document: str = Field(..., description="CPF or CNPJ, punctuation allowed")
    phone: Optional[str] = None

    @field_validator("document")
    @classmethod
    def _document_digits(cls, v: str) -> str:
        digits = re.sub(r"\D", "", v or "")
        if len(digits) not in (11, 14):
            raise ValueError("document must have 11 (CPF) or 14 (CNPJ) digits")
        return digits


class PaymentItem(DTOBase):
    title: str
    unit_price: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1)
    tangible: bool = False


class CreatePixPayment(DTOBase):
    """Buyer request for a new payment."""

    campaign_id: str
    customer_id: str
    creator_id: str
    amount: int = Field(..., gt=0, description="Total in centavos")
    numbers_quantity: int = Field(default=1, ge=1)
    payment_method: PaymentMethod = PaymentMethod.PIX
    customer: CustomerData
    items: list[PaymentItem] = Field(default_factory=list)
    description: Optional[str] = None
    postback_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PaymentTransactionRequest(DTOBase):
    """What an adapter sends to its processor."""

    external_id: str
    amount: int = Field(..., gt=0)
    payment_method: PaymentMethod = PaymentMethod.PIX
    customer: CustomerData
    items: list[PaymentItem] = Field(default_factory=list)
    description: Optional[str] = None
    postback_url: Optional[str] = None
    expires_in_minutes: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CustomerSnapshotDTO(DTOBase):
    name: Optional[str] = None
    email: Optional[str] = None
    document: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentTransactionResponse(DTOBase):
    success: bool = True
    transaction_id: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    provider_status: Optional[str] = None
    pix_code: Optional[str] = None
    pix_qr_code: Optional[str] = None
    amount: Optional[int] = None
    amount_seller: Optional[int] = None
    tax_seller: Optional[int] = None
    tax_platform: Optional[int] = None
    expires_at: Optional[datetime] = None
    message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.success and bool(self.transaction_id)


class PaymentDetailsResponse(DTOBase):
    """Processor view of one transaction; ``metadata`` carries the PIX payload."""

    transaction_id: str
    status: PaymentStatus
    provider_status: Optional[str] = None
    amount: Optional[int] = None
    method: Optional[PaymentMethod] = None
    customer: Optional[CustomerSnapshotDTO] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(DTOBase):
    """Processor notification normalized to internal vocabulary."""

    gateway_type: str
    status: PaymentStatus
    provider_status: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_code: Optional[str] = None
    amount_paid: Optional[int] = None
    occurred_at: Optional[datetime] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class PaymentDTO(DTOBase):
    id: Optional[int] = None
    payment_code: str
    campaign_id: str
    customer_id: str
    creator_id: str
    amount: int
    numbers_quantity: int
    payment_method: PaymentMethod
    status: PaymentStatus
    payment_processor: Optional[str] = None
    processor_transaction_id: Optional[str] = None
    gateway_id: Optional[str] = None
    tax_seller: Optional[int] = None
    tax_platform: Optional[int] = None
    amount_received: Optional[int] = None
    pix_code: Optional[str] = None
    pix_qr_code: Optional[str] = None
    customer: CustomerSnapshotDTO
    purchase_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentDTO":
        return cls.model_validate(payment)
