"""
Payment domain events.

Collected by the lifecycle service for transitions it actually won, so a
replayed webhook never produces a second event.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    payment_code: str
    creator_id: str
    processor_transaction_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentApproved(PaymentEvent):
    amount_received: Optional[int] = None


@dataclass
class PaymentDeclined(PaymentEvent):
    pass


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PaymentCanceled(PaymentEvent):
    pass


@dataclass
class PaymentRefunded(PaymentEvent):
    pass


@dataclass
class PaymentExpired(PaymentEvent):
    pass


EVENT_BY_STATUS = {
    "APPROVED": PaymentApproved,
    "DECLINED": PaymentDeclined,
    "FAILED": PaymentFailed,
    "CANCELED": PaymentCanceled,
    "REFUNDED": PaymentRefunded,
    "EXPIRED": PaymentExpired,
}
