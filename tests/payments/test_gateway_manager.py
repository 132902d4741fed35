from datetime import datetime, timezone

import pytest

from domain.gateway.entity import GatewayStatus
from domain.payment.exceptions import NoGatewayConfigured
from tests.payments.fakes import make_config


@pytest.mark.asyncio
async def test_default_gateway_is_preferred(manager, store):
    await store.gateways.add(make_config("gw-a", is_default=False))
    await store.gateways.add(make_config("gw-b", is_default=True))

    gateway = await manager.get_default_gateway("creator-1")

    assert gateway.gateway_id == "gw-b"


@pytest.mark.asyncio
async def test_falls_back_to_oldest_active_gateway(manager, store):
    await store.gateways.add(
        make_config("gw-new", is_default=False, created_at=datetime(2024, 3, 1, tzinfo=timezone.utc))
    )
    await store.gateways.add(
        make_config("gw-old", is_default=False, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    )
    await store.gateways.add(make_config("gw-off", is_default=True, status=GatewayStatus.INACTIVE))

    gateway = await manager.get_default_gateway("creator-1")

    assert gateway.gateway_id == "gw-old"


@pytest.mark.asyncio
async def test_no_active_gateway(manager, store):
    await store.gateways.add(make_config(status=GatewayStatus.ERROR))

    assert await manager.get_default_gateway("creator-1") is None
    assert not await manager.has_active_gateway("creator-1")
    with pytest.raises(NoGatewayConfigured):
        await manager.require_gateway("creator-1")


@pytest.mark.asyncio
async def test_gateway_by_id_requires_active_and_same_tenant(manager, store):
    await store.gateways.add(make_config("gw-1"))
    await store.gateways.add(make_config("gw-2", status=GatewayStatus.INACTIVE, is_default=False))

    assert (await manager.get_gateway_by_id("creator-1", "gw-1")).gateway_id == "gw-1"
    assert await manager.get_gateway_by_id("creator-1", "gw-2") is None
    assert await manager.get_gateway_by_id("creator-2", "gw-1") is None


@pytest.mark.asyncio
async def test_create_pix_transaction_closes_adapter(manager, store, gateways):
    from application.dtos.payments import PaymentTransactionRequest

    await store.gateways.add(make_config())
    request = PaymentTransactionRequest(
        external_id="PG-1",
        amount=1000,
        customer={"name": "Ana", "email": "ana@example.com", "document": "12345678901"},
    )

    result = await manager.create_pix_transaction("creator-1", request)

    assert result.transaction_id == "tx-1"
    assert gateways["gw-1"].closed == 1


@pytest.mark.asyncio
async def test_create_pix_transaction_without_gateway(manager):
    from application.dtos.payments import PaymentTransactionRequest

    request = PaymentTransactionRequest(
        external_id="PG-1",
        amount=1000,
        customer={"name": "Ana", "email": "ana@example.com", "document": "12345678901"},
    )
    with pytest.raises(NoGatewayConfigured):
        await manager.create_pix_transaction("creator-1", request)


@pytest.mark.asyncio
async def test_webhook_scans_every_active_gateway(manager, store):
    await store.gateways.add(make_config("gw-1"))
    await store.gateways.add(make_config("gw-2", is_default=False))

    result = await manager.validate_webhook("creator-1", {"paymentId": "tx-9", "gateway": "gw-2"})

    assert result.is_valid
    assert result.gateway.gateway_id == "gw-2"
    assert result.config.id == "gw-2"


@pytest.mark.asyncio
async def test_webhook_routed_by_gateway_id(manager, store, gateways):
    await store.gateways.add(make_config("gw-1"))
    await store.gateways.add(make_config("gw-2", is_default=False))

    result = await manager.validate_webhook(
        "creator-1", {"paymentId": "tx-9", "gateway": "gw-2"}, gateway_id="gw-2"
    )

    assert result.is_valid
    assert "gw-1" not in gateways


@pytest.mark.asyncio
async def test_webhook_no_match(manager, store, gateways):
    await store.gateways.add(make_config("gw-1"))

    result = await manager.validate_webhook("creator-1", {"paymentId": "tx-9", "gateway": "gw-x"})

    assert not result.is_valid
    assert result.gateway is None
    assert gateways["gw-1"].closed == 1


@pytest.mark.asyncio
async def test_webhook_skips_gateway_with_broken_credentials(uow_factory, store, gateway_factory):
    from application.services.gateway_manager import GatewayManager
    from infrastructure.external.vault import FernetCredentialVault

    vault = FernetCredentialVault(FernetCredentialVault.generate_key())
    manager = GatewayManager(uow_factory=uow_factory, vault=vault, factory=gateway_factory)
    await store.gateways.add(make_config("gw-broken", credentials="not-a-token"))
    await store.gateways.add(
        make_config("gw-ok", is_default=False, credentials=vault.encrypt({"secretKey": "sk"}))
    )

    result = await manager.validate_webhook("creator-1", {"paymentId": "tx-1", "gateway": "gw-ok"})

    assert result.is_valid
    assert result.config.id == "gw-ok"


@pytest.mark.asyncio
async def test_list_gateways_hides_credentials(manager, store):
    await store.gateways.add(make_config("gw-1"))

    listing = await manager.list_gateways("creator-1")

    assert listing[0]["id"] == "gw-1"
    assert listing[0]["has_credentials"] is True
    assert "credentials" not in listing[0]


@pytest.mark.asyncio
async def test_set_default_gateway(manager, store):
    await store.gateways.add(make_config("gw-1", is_default=True))
    await store.gateways.add(make_config("gw-2", is_default=False))

    await manager.set_default_gateway("creator-1", "gw-2")

    assert (await manager.get_default_gateway("creator-1")).gateway_id == "gw-2"
    with pytest.raises(NoGatewayConfigured):
        await manager.set_default_gateway("creator-1", "gw-missing")
