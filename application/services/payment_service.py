"""
Application service orchestrating the payment lifecycle.

Depends only on ports, domain types and the unit of work; gateway adapters
reach it through GatewayManager, wired at the composition root (API/tasks).

Status writes are conditional on the stored status, so a webhook, the
expiration sweep and a manual cancel racing on one payment cannot both win.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from application.dtos.payments import (
    CreatePixPayment,
    PaymentTransactionRequest,
    PaymentTransactionResponse,
    WebhookEvent,
)
from application.services.gateway_manager import GatewayManager
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    CustomerSnapshot,
    Payment,
    PaymentStatus,
    ProcessorResponse,
    allowed_sources,
)
from domain.payment.events import EVENT_BY_STATUS, PaymentEvent
from domain.payment.exceptions import (
    AmountBelowMinimum,
    CredentialError,
    DuplicateIdempotencyKey,
    DuplicatePaymentAttempt,
    DuplicatePaymentCode,
    GatewayCommunicationError,
    InvalidStateTransition,
    PaymentNotFound,
)
from domain.services.entity_code import CodeGenerator
from shared.masking import mask_document, mask_email, mask_phone


logger = get_logger(__name__)

PAYMENT_CODE_PREFIX = "PG"
CODE_ATTEMPTS = 3

# columns a status transition may touch besides ``status``
_TRANSITION_FIELDS = (
    "approved_at",
    "refunded_at",
    "canceled_at",
    "amount_received",
    "failure_reason",
    "updated_at",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WebhookOutcome:
    accepted: bool
    applied: bool = False
    payment_code: Optional[str] = None


class PaymentLifecycleService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway_manager: GatewayManager,
        code_generator: CodeGenerator,
        *,
        pix_expiration_minutes: Optional[int] = None,
        duplicate_window_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateways = gateway_manager
        self._codes = code_generator
        minutes = pix_expiration_minutes if pix_expiration_minutes is not None else payment_settings.pix.expiration_minutes
        self._pix_expiration = timedelta(minutes=minutes)
        window = duplicate_window_seconds if duplicate_window_seconds is not None else payment_settings.duplicate_window_seconds
        self._duplicate_window = timedelta(seconds=window)
        self._clock = clock
        self.events: List[PaymentEvent] = []

    # ----- creation -----

    async def create(
        self,
        data: CreatePixPayment,
        idempotency_key: Optional[str] = None,
        gateway_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Payment:
        """Create a payment and register it with the tenant's processor.

        A repeated ``idempotency_key`` returns the stored payment without
        calling the processor again. Transient processor failures leave the
        payment PENDING (the sweep or a retry settles it); permanent ones
        mark it FAILED. Both re-raise.
        """
        now = self._clock()
        async with self._uow_factory() as uow:
            repo = uow.payment_repository
            if idempotency_key:
                existing = await repo.get_by_idempotency_key(idempotency_key)
                if existing is not None:
                    logger.info(
                        "payment_idempotent_replay",
                        payment_code=existing.payment_code,
                        idempotency_key=idempotency_key,
                    )
                    return existing
            if self._duplicate_window.total_seconds() > 0:
                duplicate = await repo.find_recent_duplicate(
                    campaign_id=data.campaign_id,
                    customer_id=data.customer_id,
                    creator_id=data.creator_id,
                    amount=data.amount,
                    since=now - self._duplicate_window,
                )
                if duplicate is not None:
                    logger.warning(
                        "payment_duplicate_attempt",
                        campaign_id=data.campaign_id,
                        customer_id=data.customer_id,
                        existing_payment_code=duplicate.payment_code,
                    )
                    raise DuplicatePaymentAttempt(duplicate.payment_code)

        gateway = await self._gateways.require_gateway(data.creator_id, gateway_id)
        try:
            if data.amount < gateway.minimum_amount:
                raise AmountBelowMinimum(data.amount, gateway.minimum_amount)

            payment = Payment.new(
                payment_code=self._codes.generate(data.campaign_id, prefix=PAYMENT_CODE_PREFIX),
                campaign_id=data.campaign_id,
                customer_id=data.customer_id,
                creator_id=data.creator_id,
                amount=data.amount,
                payment_method=data.payment_method,
                numbers_quantity=data.numbers_quantity,
                idempotency_key=idempotency_key,
                customer=CustomerSnapshot(
                    name=data.customer.name,
                    email=mask_email(data.customer.email),
                    document=mask_document(data.customer.document),
                    phone=mask_phone(data.customer.phone),
                ),
                payment_processor=gateway.gateway_type,
                gateway_id=gateway.gateway_id,
                metadata=data.metadata,
                purchase_at=now,
                pix_expiration=self._pix_expiration,
            )
            try:
                payment = await self._insert(payment)
            except DuplicateIdempotencyKey:
                async with self._uow_factory(readonly=True) as uow:
                    existing = await uow.payment_repository.get_by_idempotency_key(idempotency_key)
                if existing is None:
                    raise
                logger.info("payment_idempotent_race", payment_code=existing.payment_code)
                return existing

            logger.info(
                "payment_created",
                payment_code=payment.payment_code,
                campaign_id=payment.campaign_id,
                creator_id=payment.creator_id,
                amount=payment.amount,
                method=payment.payment_method.value,
                gateway=gateway.gateway_type,
            )

            request = PaymentTransactionRequest(
                external_id=payment.payment_code,
                amount=payment.amount,
                payment_method=payment.payment_method,
                customer=data.customer,
                items=data.items,
                description=data.description,
                postback_url=data.postback_url,
                expires_in_minutes=int(self._pix_expiration.total_seconds() // 60),
                metadata={"campaign_id": data.campaign_id, "numbers_quantity": data.numbers_quantity},
            )
            try:
                result = await gateway.create_transaction(request, timeout=timeout)
            except GatewayCommunicationError as exc:
                if exc.is_transient:
                    logger.warning(
                        "payment_gateway_transient_error",
                        payment_code=payment.payment_code,
                        status_code=exc.status_code,
                        error=exc.message,
                    )
                    raise
                await self._fail_quietly(payment, exc.message)
                raise
            except (CredentialError, AmountBelowMinimum) as exc:
                await self._fail_quietly(payment, exc.message)
                raise

            return await self._record_transaction(payment, result)
        finally:
            await gateway.aclose()

    async def _insert(self, payment: Payment) -> Payment:
        """Store a new payment, drawing a fresh code when the generated one is taken."""
        attempt = 1
        while True:
            try:
                async with self._uow_factory() as uow:
                    return await uow.payment_repository.add(payment)
            except DuplicatePaymentCode:
                if attempt >= CODE_ATTEMPTS:
                    raise
                logger.warning("payment_code_regenerated", payment_code=payment.payment_code, attempt=attempt)
                payment.payment_code = self._codes.generate(payment.campaign_id, prefix=PAYMENT_CODE_PREFIX)
                attempt += 1

    async def _record_transaction(self, payment: Payment, result: PaymentTransactionResponse) -> Payment:
        """Store the processor response, then open the payment.

        Only processor-owned columns are written, so a webhook that settled
        the payment while the purchase call was in flight is kept as is.
        """
        payment.processor_transaction_id = result.transaction_id or payment.processor_transaction_id
        payment.pix_code = result.pix_code
        payment.pix_qr_code = result.pix_qr_code
        payment.tax_seller = result.tax_seller
        payment.tax_platform = result.tax_platform
        payment.processor_response = ProcessorResponse(
            code=result.provider_status,
            message=result.message,
            reference_id=result.transaction_id,
        )
        if result.amount_seller is not None:
            payment.update_metadata("amount_seller", result.amount_seller)
        payment.updated_at = self._clock()
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.update(payment)

        if not result.accepted:
            await self._fail_quietly(payment, result.message or "Processor did not accept the transaction")
            return payment

        try:
            await self._transition(payment, PaymentStatus.INITIALIZED)
        except InvalidStateTransition:
            # a webhook already settled it
            logger.info("payment_initialize_skipped", payment_code=payment.payment_code, status=payment.status.value)
        return payment

    async def _fail_quietly(self, payment: Payment, reason: str) -> None:
        try:
            await self._transition(payment, PaymentStatus.FAILED, reason=reason)
        except InvalidStateTransition:
            logger.info("payment_fail_skipped", payment_code=payment.payment_code, status=payment.status.value)
        else:
            logger.warning("payment_failed", payment_code=payment.payment_code, reason=reason)

    # ----- transitions -----

    async def _transition(
        self,
        payment: Payment,
        target: PaymentStatus,
        *,
        amount_received: Optional[int] = None,
        reason: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Conditionally move ``payment`` to ``target``; updates it in place.

        Returns False for a same-status request (including one that lost a
        race to an identical writer). Raises InvalidStateTransition otherwise.
        """
        target = PaymentStatus(target)
        candidate = copy.deepcopy(payment)
        now = self._clock()
        if target == PaymentStatus.APPROVED:
            changed = candidate.mark_approved(amount_received, at=now)
        elif target == PaymentStatus.FAILED:
            changed = candidate.mark_failed(reason, at=now)
        else:
            changed = candidate.transition_to(target, at=now)
        if not changed:
            return False

        changes = {name: getattr(candidate, name) for name in _TRANSITION_FIELDS}
        changes.update(extra or {})
        async with self._uow_factory() as uow:
            won = await uow.payment_repository.transition(
                payment.id,
                target,
                from_statuses=allowed_sources(target),
                changes=changes,
            )
            if not won:
                current = await uow.payment_repository.get_by_id(payment.id)

        if won:
            for name, value in changes.items():
                setattr(candidate, name, value)
            payment.__dict__.update(candidate.__dict__)
            self._collect_event(payment, target, reason)
            logger.info(
                "payment_status_changed",
                payment_code=payment.payment_code,
                status=target.value,
            )
            return True

        if current is None:
            raise PaymentNotFound(payment.payment_code)
        payment.__dict__.update(current.__dict__)
        if current.status == target:
            return False
        raise InvalidStateTransition(current.status.value, target.value, payment_code=payment.payment_code)

    def _collect_event(self, payment: Payment, target: PaymentStatus, reason: Optional[str]) -> None:
        event_cls = EVENT_BY_STATUS.get(target.value)
        if event_cls is None:
            return
        kwargs: dict[str, Any] = {
            "payment_code": payment.payment_code,
            "creator_id": payment.creator_id,
            "processor_transaction_id": payment.processor_transaction_id,
        }
        if target == PaymentStatus.APPROVED:
            kwargs["amount_received"] = payment.amount_received
        elif target == PaymentStatus.FAILED:
            kwargs["reason"] = reason
        self.events.append(event_cls(**kwargs))

    def pull_events(self) -> List[PaymentEvent]:
        events, self.events = self.events, []
        return events

    # ----- webhooks -----

    async def apply_webhook_event(self, event: WebhookEvent, tenant_id: Optional[str] = None) -> bool:
        """Apply a normalized processor event. True when it changed the payment."""
        async with self._uow_factory(readonly=True) as uow:
            payment = None
            if event.transaction_id:
                payment = await uow.payment_repository.get_by_processor_transaction_id(event.transaction_id)
            if payment is None and event.payment_code:
                payment = await uow.payment_repository.get_by_code(event.payment_code)

        if payment is None:
            logger.warning(
                "payment_webhook_unknown_payment",
                transaction_id=event.transaction_id,
                payment_code=event.payment_code,
            )
            return False
        if tenant_id is not None and payment.creator_id != tenant_id:
            logger.warning(
                "payment_webhook_tenant_mismatch",
                payment_code=payment.payment_code,
                tenant_id=tenant_id,
            )
            return False
        if event.status == PaymentStatus.PENDING:
            return False

        extra: dict[str, Any] = {}
        if payment.processor_transaction_id is None and event.transaction_id:
            extra["processor_transaction_id"] = event.transaction_id
        changed = await self._transition(
            payment,
            event.status,
            amount_received=event.amount_paid,
            extra=extra,
        )
        if not changed:
            logger.info("payment_webhook_replay", payment_code=payment.payment_code, status=event.status.value)
        return changed

    async def handle_webhook(
        self,
        tenant_id: str,
        payload: dict[str, Any],
        signature: Optional[str] = None,
        gateway_id: Optional[str] = None,
    ) -> WebhookOutcome:
        """Validate and apply a raw webhook. Never raises for bad input."""
        validation = await self._gateways.validate_webhook(tenant_id, payload, signature, gateway_id)
        if not validation.is_valid or validation.gateway is None:
            logger.warning("payment_webhook_rejected", tenant_id=tenant_id, gateway_id=gateway_id)
            return WebhookOutcome(accepted=False)
        try:
            event = validation.gateway.parse_webhook_event(payload)
        except (ValidationError, BusinessException) as exc:
            logger.warning(
                "payment_webhook_unparseable",
                tenant_id=tenant_id,
                gateway=validation.gateway.gateway_type,
                error=str(exc),
            )
            return WebhookOutcome(accepted=False)
        finally:
            await validation.gateway.aclose()

        logger.info(
            "payment_webhook_received",
            tenant_id=tenant_id,
            gateway=event.gateway_type,
            transaction_id=event.transaction_id,
            payment_code=event.payment_code,
            provider_status=event.provider_status,
        )
        try:
            applied = await self.apply_webhook_event(event, tenant_id=tenant_id)
        except InvalidStateTransition as exc:
            logger.warning(
                "payment_webhook_transition_rejected",
                tenant_id=tenant_id,
                payment_code=exc.details.get("payment_code") if exc.details else None,
                current=exc.current,
                requested=exc.requested,
            )
            return WebhookOutcome(accepted=True, applied=False, payment_code=event.payment_code)
        except BusinessException as exc:
            logger.warning(
                "payment_webhook_apply_failed",
                tenant_id=tenant_id,
                payment_code=event.payment_code,
                error_type=exc.error_type,
                error=exc.message,
            )
            return WebhookOutcome(accepted=True, applied=False, payment_code=event.payment_code)
        return WebhookOutcome(accepted=True, applied=applied, payment_code=event.payment_code)

    # ----- sweep -----

    async def expire_stale_pix_payments(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        async with self._uow_factory() as uow:
            count = await uow.payment_repository.expire_stale_pix(now)
        if count:
            logger.info("pix_payments_expired", count=count, cutoff=now.isoformat())
        return count

    # ----- manual operations -----

    async def get_by_code(self, payment_code: str) -> Payment:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_code(payment_code)
        if payment is None:
            raise PaymentNotFound(payment_code)
        return payment

    async def cancel(self, payment_code: str) -> Payment:
        payment = await self.get_by_code(payment_code)
        await self._transition(payment, PaymentStatus.CANCELED)
        return payment

    async def refund(self, payment_code: str) -> Payment:
        payment = await self.get_by_code(payment_code)
        await self._transition(payment, PaymentStatus.REFUNDED)
        return payment
