"""In-memory stand-ins for the persistence and processor ports."""
from __future__ import annotations

import copy
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from application.dtos.payments import (
    PaymentDetailsResponse,
    PaymentTransactionRequest,
    PaymentTransactionResponse,
    WebhookEvent,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.gateway.entity import GatewayConfiguration, GatewayStatus, GatewayType
from domain.gateway.repository import GatewayConfigurationRepository
from domain.payment.entity import OPEN_STATUSES, Payment, PaymentMethod, PaymentStatus
from domain.payment.exceptions import DuplicateIdempotencyKey, DuplicatePaymentCode
from domain.payment.repository import PROCESSOR_FIELDS, PaymentRepository


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self) -> None:
        self.rows: dict[int, Payment] = {}
        self._next_id = 1

    def _find(self, predicate) -> Optional[Payment]:
        for row in self.rows.values():
            if predicate(row):
                return copy.deepcopy(row)
        return None

    async def add(self, payment: Payment) -> Payment:
        if payment.idempotency_key and any(
            row.idempotency_key == payment.idempotency_key for row in self.rows.values()
        ):
            raise DuplicateIdempotencyKey(payment.idempotency_key)
        if any(row.payment_code == payment.payment_code for row in self.rows.values()):
            raise DuplicatePaymentCode(payment.payment_code)
        stored = copy.deepcopy(payment)
        stored.id = self._next_id
        self._next_id += 1
        self.rows[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        row = self.rows.get(payment_id)
        return copy.deepcopy(row) if row else None

    async def get_by_code(self, payment_code: str) -> Optional[Payment]:
        return self._find(lambda r: r.payment_code == payment_code)

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        return self._find(lambda r: r.idempotency_key == idempotency_key)

    async def get_by_processor_transaction_id(self, processor_transaction_id: str) -> Optional[Payment]:
        return self._find(lambda r: r.processor_transaction_id == processor_transaction_id)

    async def find_recent_duplicate(
        self,
        *,
        campaign_id: str,
        customer_id: str,
        creator_id: str,
        amount: int,
        since: datetime,
    ) -> Optional[Payment]:
        guarded = (PaymentStatus.PENDING, PaymentStatus.INITIALIZED, PaymentStatus.APPROVED)
        return self._find(
            lambda r: r.campaign_id == campaign_id
            and r.customer_id == customer_id
            and r.creator_id == creator_id
            and r.amount == amount
            and r.status in guarded
            and r.created_at >= since
        )

    async def update(self, payment: Payment) -> Payment:
        stored = self.rows[payment.id]
        for name in PROCESSOR_FIELDS:
            setattr(stored, name, copy.deepcopy(getattr(payment, name)))
        return copy.deepcopy(stored)

    async def transition(
        self,
        payment_id: int,
        target: PaymentStatus,
        *,
        from_statuses: Iterable[PaymentStatus],
        changes: Optional[dict[str, Any]] = None,
    ) -> bool:
        stored = self.rows.get(payment_id)
        if stored is None or stored.status not in tuple(from_statuses):
            return False
        for name, value in (changes or {}).items():
            setattr(stored, name, value)
        stored.status = PaymentStatus(target)
        return True

    async def expire_stale_pix(self, now: datetime) -> int:
        count = 0
        for row in self.rows.values():
            if (
                row.payment_method == PaymentMethod.PIX
                and row.status in OPEN_STATUSES
                and row.expires_at is not None
                and row.expires_at <= now
            ):
                row.status = PaymentStatus.EXPIRED
                row.updated_at = now
                count += 1
        return count


class InMemoryGatewayRepository(GatewayConfigurationRepository):
    def __init__(self) -> None:
        self.rows: dict[str, GatewayConfiguration] = {}

    async def add(self, config: GatewayConfiguration) -> GatewayConfiguration:
        self.rows[config.id] = copy.deepcopy(config)
        return copy.deepcopy(config)

    async def get(self, tenant_id: str, gateway_id: str) -> Optional[GatewayConfiguration]:
        row = self.rows.get(gateway_id)
        if row is None or row.tenant_id != tenant_id:
            return None
        return copy.deepcopy(row)

    async def get_default_active(self, tenant_id: str) -> Optional[GatewayConfiguration]:
        for row in self.rows.values():
            if row.tenant_id == tenant_id and row.is_default and row.is_active:
                return copy.deepcopy(row)
        return None

    async def list_by_tenant(self, tenant_id: str, *, active_only: bool = False) -> List[GatewayConfiguration]:
        rows = [r for r in self.rows.values() if r.tenant_id == tenant_id and (r.is_active or not active_only)]
        rows.sort(key=lambda r: r.created_at)
        return [copy.deepcopy(r) for r in rows]

    async def set_default(self, tenant_id: str, gateway_id: str) -> bool:
        target = self.rows.get(gateway_id)
        if target is None or target.tenant_id != tenant_id:
            return False
        for row in self.rows.values():
            if row.tenant_id == tenant_id:
                row.is_default = row.id == gateway_id
        return True


class InMemoryStore:
    def __init__(self) -> None:
        self.payments = InMemoryPaymentRepository()
        self.gateways = InMemoryGatewayRepository()


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self.payment_repository = store.payments
        self.gateway_repository = store.gateways

    async def commit(self) -> None:
        self._committed = True

    async def rollback(self) -> None:
        self._committed = False


class FakeGateway:
    """Records calls; ``error`` is raised from create_transaction when set.

    ``during_call`` is awaited with the request before the response is
    returned, to interleave other work with an in-flight purchase.
    """

    gateway_type = "PAYMENT_GATEWAY_EXAMPLE"
    name = "Fake gateway"

    def __init__(self, gateway_id: str = "gw-1", minimum_amount: int = 500) -> None:
        self.gateway_id = gateway_id
        self.minimum_amount = minimum_amount
        self.calls: list[PaymentTransactionRequest] = []
        self.closed = 0
        self.error: Optional[Exception] = None
        self.accept = True
        self.during_call: Optional[Callable[[PaymentTransactionRequest], Awaitable[Any]]] = None

    async def validate_credentials(self) -> bool:
        return True

    async def create_transaction(self, data, timeout=None) -> PaymentTransactionResponse:
        self.calls.append(data)
        if self.during_call is not None:
            await self.during_call(data)
        if self.error is not None:
            raise self.error
        if not self.accept:
            return PaymentTransactionResponse(success=False, message="refused")
        return PaymentTransactionResponse(
            transaction_id=f"tx-{len(self.calls)}",
            provider_status="PENDING",
            pix_code="00020126pix",
            pix_qr_code="data:image/png;base64,AAAA",
            amount=data.amount,
            tax_seller=25,
            tax_platform=10,
        )

    async def create_pix_transaction(self, data, timeout=None) -> PaymentTransactionResponse:
        return await self.create_transaction(data, timeout=timeout)

    async def get_payment_details(self, transaction_id, timeout=None) -> PaymentDetailsResponse:
        return PaymentDetailsResponse(transaction_id=transaction_id, status=PaymentStatus.PENDING)

    def validate_webhook(self, payload, signature=None) -> bool:
        return bool(payload.get("paymentId")) and payload.get("gateway", self.gateway_id) == self.gateway_id

    def parse_webhook_event(self, payload) -> WebhookEvent:
        return WebhookEvent(
            gateway_type=self.gateway_type,
            status=PaymentStatus(payload["status"]),
            provider_status=payload["status"],
            transaction_id=payload.get("paymentId"),
            payment_code=payload.get("externalId"),
            amount_paid=payload.get("netValue"),
            raw=payload,
        )

    async def aclose(self) -> None:
        self.closed += 1


class PlainVault:
    """Credentials stored as JSON text."""

    def encrypt(self, credentials: dict[str, Any]) -> str:
        return json.dumps(credentials)

    def decrypt(self, bundle: str) -> dict[str, Any]:
        return json.loads(bundle)


def make_config(
    gateway_id: str = "gw-1",
    tenant_id: str = "creator-1",
    *,
    status: GatewayStatus = GatewayStatus.ACTIVE,
    is_default: bool = True,
    gateway_type: GatewayType = GatewayType.PAYMENT_GATEWAY_EXAMPLE,
    created_at: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc),
    credentials: Optional[str] = None,
) -> GatewayConfiguration:
    return GatewayConfiguration(
        id=gateway_id,
        tenant_id=tenant_id,
        gateway_type=gateway_type,
        name=f"Gateway {gateway_id}",
        status=status,
        is_default=is_default,
        credentials=credentials if credentials is not None else json.dumps({"secretKey": f"sk-{gateway_id}"}),
        created_at=created_at,
    )
