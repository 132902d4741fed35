"""
Payment repository interface.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Optional

from .entity import Payment, PaymentStatus


# Columns owned by the processor response; ``update`` writes nothing else.
PROCESSOR_FIELDS = (
    "payment_processor",
    "gateway_id",
    "processor_transaction_id",
    "pix_code",
    "pix_qr_code",
    "tax_seller",
    "tax_platform",
    "processor_response",
    "metadata",
    "updated_at",
)


class PaymentRepository(ABC):
    """Storage contract for payments.

    Status writes are conditional: ``transition`` only touches the row when its
    current status is one of ``from_statuses`` and reports whether it did.
    """

    @abstractmethod
    async def add(self, payment: Payment) -> Payment:
        """Insert a new payment.

        Raises DuplicateIdempotencyKey or DuplicatePaymentCode on a unique clash.
        """
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_code(self, payment_code: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_processor_transaction_id(self, processor_transaction_id: str) -> Optional[Payment]:
        pass

    @abstractmethod
    async def find_recent_duplicate(
        self,
        *,
        campaign_id: str,
        customer_id: str,
        creator_id: str,
        amount: int,
        since: datetime,
    ) -> Optional[Payment]:
        """Latest open or approved payment for the same purchase created after ``since``."""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """Write ``PROCESSOR_FIELDS`` of ``payment`` and return the stored row.

        Status and status-owned columns are left alone; the returned payment
        reflects whatever a concurrent transition already wrote.
        """
        pass

    @abstractmethod
    async def transition(
        self,
        payment_id: int,
        target: PaymentStatus,
        *,
        from_statuses: Iterable[PaymentStatus],
        changes: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Conditionally set ``status = target`` plus ``changes``. True if this call won."""
        pass

    @abstractmethod
    async def expire_stale_pix(self, now: datetime) -> int:
        """Move open PIX payments with ``expires_at <= now`` to EXPIRED in one statement."""
        pass
