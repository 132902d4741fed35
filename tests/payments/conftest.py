from datetime import datetime, timedelta, timezone

import pytest

from application.services.gateway_manager import GatewayManager
from application.services.payment_service import PaymentLifecycleService
from domain.services.entity_code import CodeGenerator, StaticWorkerIdSource
from tests.payments.fakes import FakeGateway, FakeUnitOfWork, InMemoryStore, PlainVault, make_config


class SteppingClock:
    """Fixed clock that tests move forward explicitly."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    def factory(**kwargs):
        return FakeUnitOfWork(store, **kwargs)
    return factory


@pytest.fixture
def gateways():
    """Adapters handed out by the factory, keyed by configuration id."""
    return {}


@pytest.fixture
def gateway_factory(gateways):
    def factory(resolved):
        gateway = gateways.get(resolved.config.id)
        if gateway is None:
            gateway = gateways[resolved.config.id] = FakeGateway(resolved.config.id)
        return gateway
    return factory


@pytest.fixture
def manager(uow_factory, gateway_factory):
    return GatewayManager(uow_factory=uow_factory, vault=PlainVault(), factory=gateway_factory)


@pytest.fixture
def clock():
    return SteppingClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def code_generator():
    return CodeGenerator("lifecycle-secret", worker_source=StaticWorkerIdSource(2))


@pytest.fixture
def lifecycle(uow_factory, manager, code_generator, clock):
    return PaymentLifecycleService(
        uow_factory=uow_factory,
        gateway_manager=manager,
        code_generator=code_generator,
        pix_expiration_minutes=10,
        duplicate_window_seconds=300,
        clock=clock,
    )


@pytest.fixture
async def configured(store, gateways):
    """One active default gateway for creator-1."""
    await store.gateways.add(make_config())
    gateways["gw-1"] = FakeGateway("gw-1")
    return store
