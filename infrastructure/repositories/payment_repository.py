"""
Payment repository backed by SQLAlchemy.
"""
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.entity import (
    CustomerSnapshot,
    OPEN_STATUSES,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ProcessorResponse,
)
from domain.payment.exceptions import DuplicateIdempotencyKey, DuplicatePaymentCode
from domain.payment.repository import PROCESSOR_FIELDS, PaymentRepository
from infrastructure.models.payment import PaymentModel


logger = get_logger(__name__)

_DUPLICATE_GUARD_STATUSES = (PaymentStatus.PENDING, PaymentStatus.INITIALIZED, PaymentStatus.APPROVED)


class SQLAlchemyPaymentRepository(PaymentRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        response = model.processor_response or None
        return Payment(
            id=model.id,
            payment_code=model.payment_code,
            idempotency_key=model.idempotency_key,
            campaign_id=model.campaign_id,
            customer_id=model.customer_id,
            creator_id=model.creator_id,
            amount=model.amount,
            tax_seller=model.tax_seller,
            tax_platform=model.tax_platform,
            amount_received=model.amount_received,
            numbers_quantity=model.numbers_quantity,
            payment_method=PaymentMethod(model.payment_method),
            payment_processor=model.payment_processor,
            processor_transaction_id=model.processor_transaction_id,
            gateway_id=model.gateway_id,
            status=PaymentStatus(model.status),
            purchase_at=model.purchase_at,
            approved_at=model.approved_at,
            refunded_at=model.refunded_at,
            canceled_at=model.canceled_at,
            expires_at=model.expires_at,
            customer=CustomerSnapshot(
                name=model.customer_name,
                email=model.customer_email,
                document=model.customer_document,
                phone=model.customer_phone,
            ),
            pix_code=model.pix_code,
            pix_qr_code=model.pix_qr_code,
            processor_response=ProcessorResponse(**response) if response else None,
            failure_reason=model.failure_reason,
            metadata=model.extra_metadata or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        model = PaymentModel(
            id=entity.id,
            payment_code=entity.payment_code,
            idempotency_key=entity.idempotency_key,
            campaign_id=entity.campaign_id,
            customer_id=entity.customer_id,
            creator_id=entity.creator_id,
            amount=entity.amount,
            numbers_quantity=entity.numbers_quantity,
            payment_method=entity.payment_method.value,
            status=entity.status.value,
            purchase_at=entity.purchase_at,
            approved_at=entity.approved_at,
            refunded_at=entity.refunded_at,
            canceled_at=entity.canceled_at,
            expires_at=entity.expires_at,
            customer_name=entity.customer.name,
            customer_email=entity.customer.email,
            customer_document=entity.customer.document,
            customer_phone=entity.customer.phone,
            amount_received=entity.amount_received,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at,
        )
        for column, value in self._processor_values(entity).items():
            setattr(model, column, value)
        return model

    @staticmethod
    def _processor_values(entity: Payment) -> dict[str, Any]:
        """Column values for ``PROCESSOR_FIELDS``."""
        values: dict[str, Any] = {}
        for name in PROCESSOR_FIELDS:
            value = getattr(entity, name)
            if name == "processor_response":
                value = (
                    {
                        "code": value.code,
                        "message": value.message,
                        "reference_id": value.reference_id,
                    }
                    if value
                    else None
                )
            elif name == "metadata":
                name, value = "extra_metadata", dict(value or {})
            values[name] = value
        if values.get("updated_at") is None:
            values.pop("updated_at", None)
        return values

    async def add(self, payment: Payment) -> Payment:
        try:
            db_payment = self._to_model(payment)
            self.session.add(db_payment)
            await self.session.flush()
            await self.session.refresh(db_payment)
            return self._to_entity(db_payment)
        except IntegrityError as e:
            await self.session.rollback()
            msg = str(e.orig if e.orig is not None else e).lower()
            if payment.idempotency_key and "idempotency_key" in msg:
                logger.warning("payment_idempotency_conflict", idempotency_key=payment.idempotency_key)
                raise DuplicateIdempotencyKey(payment.idempotency_key)
            if "payment_code" in msg:
                logger.warning("payment_code_conflict", payment_code=payment.payment_code)
                raise DuplicatePaymentCode(payment.payment_code)
            raise

    async def _get_one(self, *criteria) -> Optional[Payment]:
        result = await self.session.execute(select(PaymentModel).where(*criteria))
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        return await self._get_one(PaymentModel.id == payment_id)

    async def get_by_code(self, payment_code: str) -> Optional[Payment]:
        return await self._get_one(PaymentModel.payment_code == payment_code)

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        return await self._get_one(PaymentModel.idempotency_key == idempotency_key)

    async def get_by_processor_transaction_id(self, processor_transaction_id: str) -> Optional[Payment]:
        return await self._get_one(PaymentModel.processor_transaction_id == processor_transaction_id)

    async def find_recent_duplicate(
        self,
        *,
        campaign_id: str,
        customer_id: str,
        creator_id: str,
        amount: int,
        since: datetime,
    ) -> Optional[Payment]:
        stmt = (
            select(PaymentModel)
            .where(
                PaymentModel.campaign_id == campaign_id,
                PaymentModel.customer_id == customer_id,
                PaymentModel.creator_id == creator_id,
                PaymentModel.amount == amount,
                PaymentModel.status.in_([s.value for s in _DUPLICATE_GUARD_STATUSES]),
                PaymentModel.created_at >= since,
            )
            .order_by(PaymentModel.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        db_payment = result.scalars().first()
        return self._to_entity(db_payment) if db_payment else None

    async def update(self, payment: Payment) -> Payment:
        stmt = (
            update(PaymentModel)
            .where(PaymentModel.id == payment.id)
            .values(**self._processor_values(payment))
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment.id)
            .execution_options(populate_existing=True)
        )
        return self._to_entity(result.scalar_one())

    async def transition(
        self,
        payment_id: int,
        target: PaymentStatus,
        *,
        from_statuses: Iterable[PaymentStatus],
        changes: Optional[dict[str, Any]] = None,
    ) -> bool:
        values = dict(changes or {})
        values["status"] = PaymentStatus(target).value
        stmt = (
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status.in_([PaymentStatus(s).value for s in from_statuses]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        won = result.rowcount == 1
        if not won:
            logger.info("payment_transition_lost", payment_id=payment_id, target=values["status"])
        return won

    async def expire_stale_pix(self, now: datetime) -> int:
        stmt = (
            update(PaymentModel)
            .where(
                PaymentModel.payment_method == PaymentMethod.PIX.value,
                PaymentModel.status.in_([s.value for s in OPEN_STATUSES]),
                PaymentModel.expires_at.is_not(None),
                PaymentModel.expires_at <= now,
            )
            .values(status=PaymentStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
