from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.services.gateway_manager import GatewayManager
from application.services.payment_service import PaymentLifecycleService
from application.dtos.payments import CreatePixPayment
from domain.gateway.entity import GatewayStatus
from domain.payment.entity import CustomerSnapshot, Payment, PaymentMethod, PaymentStatus, ProcessorResponse
from domain.payment.exceptions import DuplicateIdempotencyKey, DuplicatePaymentCode
from domain.services.entity_code import CodeGenerator, StaticWorkerIdSource
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from tests.payments.fakes import FakeGateway, PlainVault, make_config


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    def factory(**kwargs):
        return SQLAlchemyUnitOfWork(session_factory, **kwargs)
    return factory


def new_payment(code: str, *, key=None, method=PaymentMethod.PIX, customer_id="user-1", at=NOW) -> Payment:
    return Payment.new(
        payment_code=code,
        campaign_id="campaign-1",
        customer_id=customer_id,
        creator_id="creator-1",
        amount=1000,
        payment_method=method,
        idempotency_key=key,
        customer=CustomerSnapshot(name="Maria", email="ma***@example.com"),
        metadata={"source": "web"},
        purchase_at=at,
    )


@pytest.mark.asyncio
async def test_add_and_read_back(uow_factory):
    async with uow_factory() as uow:
        saved = await uow.payment_repository.add(new_payment("PG-1", key="k1"))

    async with uow_factory(readonly=True) as uow:
        by_code = await uow.payment_repository.get_by_code("PG-1")
        by_key = await uow.payment_repository.get_by_idempotency_key("k1")

    assert saved.id is not None
    assert by_code.id == by_key.id == saved.id
    assert by_code.status == PaymentStatus.PENDING
    assert by_code.expires_at == NOW + timedelta(minutes=10)
    assert by_code.customer.email == "ma***@example.com"
    assert by_code.metadata == {"source": "web"}


@pytest.mark.asyncio
async def test_duplicate_idempotency_key(uow_factory):
    async with uow_factory() as uow:
        await uow.payment_repository.add(new_payment("PG-1", key="k1"))

    with pytest.raises(DuplicateIdempotencyKey):
        async with uow_factory() as uow:
            await uow.payment_repository.add(new_payment("PG-2", key="k1"))


@pytest.mark.asyncio
async def test_duplicate_payment_code(uow_factory):
    async with uow_factory() as uow:
        await uow.payment_repository.add(new_payment("PG-1", key="k1"))

    with pytest.raises(DuplicatePaymentCode):
        async with uow_factory() as uow:
            await uow.payment_repository.add(new_payment("PG-1", key="k2", customer_id="user-2"))


@pytest.mark.asyncio
async def test_processor_update_keeps_concurrent_approval(uow_factory):
    async with uow_factory() as uow:
        stale = await uow.payment_repository.add(new_payment("PG-1"))

    async with uow_factory() as uow:
        await uow.payment_repository.transition(
            stale.id, PaymentStatus.APPROVED,
            from_statuses=(PaymentStatus.PENDING, PaymentStatus.INITIALIZED),
            changes={"approved_at": NOW, "amount_received": 965, "processor_transaction_id": "tx-1"},
        )

    stale.processor_transaction_id = "tx-1"
    stale.pix_code = "00020126pix"
    stale.tax_seller = 25
    stale.processor_response = ProcessorResponse(code="PENDING", reference_id="tx-1")
    stale.updated_at = NOW + timedelta(seconds=1)
    async with uow_factory() as uow:
        returned = await uow.payment_repository.update(stale)

    async with uow_factory(readonly=True) as uow:
        stored = await uow.payment_repository.get_by_id(stale.id)
    for payment in (returned, stored):
        assert payment.status == PaymentStatus.APPROVED
        assert payment.amount_received == 965
        assert payment.approved_at is not None
        assert payment.pix_code == "00020126pix"
        assert payment.tax_seller == 25
        assert payment.processor_response.reference_id == "tx-1"


@pytest.mark.asyncio
async def test_conditional_transition_has_one_winner(uow_factory):
    async with uow_factory() as uow:
        payment = await uow.payment_repository.add(new_payment("PG-1"))

    open_statuses = (PaymentStatus.PENDING, PaymentStatus.INITIALIZED)
    async with uow_factory() as uow:
        first = await uow.payment_repository.transition(
            payment.id, PaymentStatus.APPROVED, from_statuses=open_statuses,
            changes={"approved_at": NOW, "amount_received": 965},
        )
    async with uow_factory() as uow:
        second = await uow.payment_repository.transition(
            payment.id, PaymentStatus.EXPIRED, from_statuses=open_statuses,
        )

    assert first is True
    assert second is False
    async with uow_factory(readonly=True) as uow:
        stored = await uow.payment_repository.get_by_id(payment.id)
    assert stored.status == PaymentStatus.APPROVED
    assert stored.amount_received == 965


@pytest.mark.asyncio
async def test_expire_stale_pix_updates_only_open_pix(uow_factory):
    async with uow_factory() as uow:
        repo = uow.payment_repository
        stale = await repo.add(new_payment("PG-1"))
        fresh = await repo.add(new_payment("PG-2", customer_id="user-2", at=NOW + timedelta(minutes=8)))
        card = await repo.add(new_payment("PG-3", customer_id="user-3", method=PaymentMethod.CREDIT_CARD))
        paid = await repo.add(new_payment("PG-4", customer_id="user-4"))
        await repo.transition(paid.id, PaymentStatus.APPROVED, from_statuses=(PaymentStatus.PENDING,))

    async with uow_factory() as uow:
        count = await uow.payment_repository.expire_stale_pix(NOW + timedelta(minutes=11))

    assert count == 1
    async with uow_factory(readonly=True) as uow:
        repo = uow.payment_repository
        assert (await repo.get_by_id(stale.id)).status == PaymentStatus.EXPIRED
        assert (await repo.get_by_id(fresh.id)).status == PaymentStatus.PENDING
        assert (await repo.get_by_id(card.id)).status == PaymentStatus.PENDING
        assert (await repo.get_by_id(paid.id)).status == PaymentStatus.APPROVED


@pytest.mark.asyncio
async def test_find_recent_duplicate(uow_factory):
    async with uow_factory() as uow:
        await uow.payment_repository.add(new_payment("PG-1"))

    async with uow_factory(readonly=True) as uow:
        repo = uow.payment_repository
        hit = await repo.find_recent_duplicate(
            campaign_id="campaign-1", customer_id="user-1", creator_id="creator-1",
            amount=1000, since=NOW - timedelta(minutes=5),
        )
        miss = await repo.find_recent_duplicate(
            campaign_id="campaign-1", customer_id="user-1", creator_id="creator-1",
            amount=1000, since=NOW + timedelta(seconds=1),
        )
    assert hit.payment_code == "PG-1"
    assert miss is None


@pytest.mark.asyncio
async def test_gateway_configuration_roundtrip(uow_factory):
    async with uow_factory() as uow:
        repo = uow.gateway_repository
        await repo.add(make_config("gw-1", is_default=True, created_at=NOW))
        await repo.add(make_config("gw-2", is_default=False, created_at=NOW + timedelta(days=1)))
        await repo.add(make_config("gw-3", status=GatewayStatus.INACTIVE, is_default=False, created_at=NOW))

    async with uow_factory() as uow:
        assert await uow.gateway_repository.set_default("creator-1", "gw-2")
        assert not await uow.gateway_repository.set_default("creator-2", "gw-2")

    async with uow_factory(readonly=True) as uow:
        repo = uow.gateway_repository
        default = await repo.get_default_active("creator-1")
        active = await repo.list_by_tenant("creator-1", active_only=True)
        every = await repo.list_by_tenant("creator-1")

    assert default.id == "gw-2"
    assert default.settings.enabled_methods == (PaymentMethod.PIX,)
    assert [c.id for c in active] == ["gw-1", "gw-2"]
    assert len(every) == 3


@pytest.mark.asyncio
async def test_lifecycle_against_database(uow_factory):
    async with uow_factory() as uow:
        await uow.gateway_repository.add(make_config("gw-1", created_at=NOW))

    gateway = FakeGateway("gw-1")
    manager = GatewayManager(uow_factory=uow_factory, vault=PlainVault(), factory=lambda resolved: gateway)
    lifecycle = PaymentLifecycleService(
        uow_factory=uow_factory,
        gateway_manager=manager,
        code_generator=CodeGenerator("db-secret", worker_source=StaticWorkerIdSource(4)),
        pix_expiration_minutes=10,
        duplicate_window_seconds=300,
        clock=lambda: NOW,
    )
    data = CreatePixPayment(
        campaign_id="campaign-1",
        customer_id="user-1",
        creator_id="creator-1",
        amount=1000,
        customer={"name": "Maria", "email": "maria@example.com", "document": "12345678901"},
    )

    payment = await lifecycle.create(data, idempotency_key="k-db")
    replay = await lifecycle.create(data, idempotency_key="k-db")
    webhook = {"paymentId": payment.processor_transaction_id, "status": "APPROVED", "netValue": 965}
    first = await lifecycle.handle_webhook("creator-1", webhook)
    second = await lifecycle.handle_webhook("creator-1", webhook)

    assert replay.id == payment.id
    assert len(gateway.calls) == 1
    assert first.applied and not second.applied
    stored = await lifecycle.get_by_code(payment.payment_code)
    assert stored.status == PaymentStatus.APPROVED
    assert stored.amount_received == 965
    assert stored.approved_at == NOW
