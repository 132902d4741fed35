"""
Payment aggregate root and its state machine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import InvalidStateTransition


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    INITIALIZED = "INITIALIZED"   # accepted by the processor, awaiting the buyer
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class PaymentMethod(str, Enum):
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BILLET = "BILLET"
    BANK_SLIP = "BANK_SLIP"
    BANK_TRANSFER = "BANK_TRANSFER"


# current status -> statuses it may move to
_OPEN_EXITS = frozenset({
    PaymentStatus.APPROVED,
    PaymentStatus.DECLINED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELED,
    PaymentStatus.EXPIRED,
})
TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: _OPEN_EXITS | {PaymentStatus.INITIALIZED},
    PaymentStatus.INITIALIZED: _OPEN_EXITS,
    PaymentStatus.APPROVED: frozenset({PaymentStatus.REFUNDED}),
}

OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.INITIALIZED)

PIX_EXPIRATION = timedelta(minutes=10)


def allowed_sources(target: PaymentStatus) -> tuple[PaymentStatus, ...]:
    """Statuses from which ``target`` is reachable; used for conditional writes."""
    return tuple(src for src, exits in TRANSITIONS.items() if target in exits)


def is_terminal(status: PaymentStatus) -> bool:
    return not TRANSITIONS.get(status)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CustomerSnapshot:
    """Buyer data copied at purchase time. Stored already masked."""

    name: Optional[str] = None
    email: Optional[str] = None
    document: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class ProcessorResponse:
    code: Optional[str] = None
    message: Optional[str] = None
    reference_id: Optional[str] = None


@dataclass
class Payment:
    """
    Payment aggregate.

    Rules:
    1. ``amount`` is in minor units, positive, and never changes after creation.
    2. Status changes go through ``transition_to``; a same-status request is a no-op.
    3. Only PIX payments can expire.
    """

    id: Optional[int]
    payment_code: str
    campaign_id: str
    customer_id: str
    creator_id: str
    amount: int
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    idempotency_key: Optional[str] = None

    numbers_quantity: int = 1
    tax_seller: Optional[int] = None
    tax_platform: Optional[int] = None
    amount_received: Optional[int] = None

    payment_processor: Optional[str] = None
    processor_transaction_id: Optional[str] = None
    gateway_id: Optional[str] = None

    purchase_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    customer: CustomerSnapshot = field(default_factory=CustomerSnapshot)
    pix_code: Optional[str] = None
    pix_qr_code: Optional[str] = None
    processor_response: Optional[ProcessorResponse] = None
    failure_reason: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount is None or self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount",
            )
        self.status = PaymentStatus(self.status)
        self.payment_method = PaymentMethod(self.payment_method)
        self.purchase_at = _ensure_utc(self.purchase_at)
        self.approved_at = _ensure_utc(self.approved_at)
        self.refunded_at = _ensure_utc(self.refunded_at)
        self.canceled_at = _ensure_utc(self.canceled_at)
        self.expires_at = _ensure_utc(self.expires_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.metadata is None:
            self.metadata = {}

    @classmethod
    def new(
        cls,
        *,
        payment_code: str,
        campaign_id: str,
        customer_id: str,
        creator_id: str,
        amount: int,
        payment_method: PaymentMethod,
        numbers_quantity: int = 1,
        idempotency_key: Optional[str] = None,
        customer: Optional[CustomerSnapshot] = None,
        payment_processor: Optional[str] = None,
        gateway_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        purchase_at: Optional[datetime] = None,
        pix_expiration: timedelta = PIX_EXPIRATION,
    ) -> "Payment":
        """Build a PENDING payment. PIX payments get ``expires_at`` set here."""
        purchase_at = _ensure_utc(purchase_at) or _now()
        method = PaymentMethod(payment_method)
        expires_at = purchase_at + pix_expiration if method == PaymentMethod.PIX else None
        return cls(
            id=None,
            payment_code=payment_code,
            campaign_id=campaign_id,
            customer_id=customer_id,
            creator_id=creator_id,
            amount=amount,
            payment_method=method,
            status=PaymentStatus.PENDING,
            idempotency_key=idempotency_key,
            numbers_quantity=numbers_quantity,
            payment_processor=payment_processor,
            gateway_id=gateway_id,
            purchase_at=purchase_at,
            expires_at=expires_at,
            customer=customer or CustomerSnapshot(),
            metadata=dict(metadata or {}),
            created_at=purchase_at,
            updated_at=purchase_at,
        )

    # ----- state machine -----

    def can_transition_to(self, target: PaymentStatus) -> bool:
        target = PaymentStatus(target)
        if target == PaymentStatus.EXPIRED and self.payment_method != PaymentMethod.PIX:
            return False
        return target in TRANSITIONS.get(self.status, frozenset())

    def transition_to(self, target: PaymentStatus, *, at: Optional[datetime] = None) -> bool:
        """Move to ``target``.

        Returns False when already there, True when the status changed.
        Raises InvalidStateTransition (and leaves the payment untouched) otherwise.
        """
        target = PaymentStatus(target)
        if self.status == target:
            return False
        if not self.can_transition_to(target):
            raise InvalidStateTransition(
                self.status.value, target.value, payment_code=self.payment_code
            )
        at = _ensure_utc(at) or _now()
        self.status = target
        self.updated_at = at
        if target == PaymentStatus.APPROVED and self.approved_at is None:
            self.approved_at = at
        elif target == PaymentStatus.REFUNDED:
            self.refunded_at = at
        elif target == PaymentStatus.CANCELED:
            self.canceled_at = at
        return True

    def mark_initialized(self, *, at: Optional[datetime] = None) -> bool:
        return self.transition_to(PaymentStatus.INITIALIZED, at=at)

    def mark_approved(self, amount_received: Optional[int] = None, *, at: Optional[datetime] = None) -> bool:
        changed = self.transition_to(PaymentStatus.APPROVED, at=at)
        if changed and self.amount_received is None:
            self.amount_received = amount_received if amount_received is not None else self.amount
        return changed

    def mark_declined(self, *, at: Optional[datetime] = None) -> bool:
        return self.transition_to(PaymentStatus.DECLINED, at=at)

    def mark_failed(self, reason: Optional[str] = None, *, at: Optional[datetime] = None) -> bool:
        changed = self.transition_to(PaymentStatus.FAILED, at=at)
        if changed:
            self.failure_reason = reason
        return changed

    def mark_canceled(self, *, at: Optional[datetime] = None) -> bool:
        return self.transition_to(PaymentStatus.CANCELED, at=at)

    def mark_refunded(self, *, at: Optional[datetime] = None) -> bool:
        return self.transition_to(PaymentStatus.REFUNDED, at=at)

    def mark_expired(self, *, at: Optional[datetime] = None) -> bool:
        return self.transition_to(PaymentStatus.EXPIRED, at=at)

    def is_final_status(self) -> bool:
        return is_terminal(self.status)

    def is_expired_at(self, now: datetime) -> bool:
        return (
            self.payment_method == PaymentMethod.PIX
            and self.status in OPEN_STATUSES
            and self.expires_at is not None
            and self.expires_at <= _ensure_utc(now)
        )

    def update_metadata(self, key: str, value: Any) -> None:
        if self.metadata is None:
            self.metadata = {}
        self.metadata[key] = value
        self.updated_at = _now()
