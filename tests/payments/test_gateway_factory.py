import pytest

from domain.gateway.entity import GatewayType, ResolvedGatewayConfig
from domain.payment.exceptions import GatewayCommunicationError, UnsupportedGatewayType
from infrastructure.external.payments import (
    create_gateway,
    register_gateway,
    supported_gateway_types,
)
from infrastructure.external.payments.example_client import ExampleGatewayClient
from infrastructure.external.payments.ghostspay_client import GhostsPayClient
from tests.payments.fakes import make_config


def resolved(gateway_type: GatewayType) -> ResolvedGatewayConfig:
    return ResolvedGatewayConfig(
        config=make_config(gateway_type=gateway_type),
        credentials={"secretKey": "sk"},
    )


def test_builds_registered_adapters():
    assert isinstance(create_gateway(resolved(GatewayType.PAYMENT_GATEWAY_EXAMPLE)), ExampleGatewayClient)
    assert isinstance(create_gateway(resolved(GatewayType.GHOSTSPAY)), GhostsPayClient)
    assert set(supported_gateway_types()) >= {GatewayType.PAYMENT_GATEWAY_EXAMPLE, GatewayType.GHOSTSPAY}


def test_unsupported_type_builds_nothing(monkeypatch):
    built = []
    monkeypatch.setattr(ExampleGatewayClient, "__init__", lambda self, *a, **kw: built.append(self))

    with pytest.raises(UnsupportedGatewayType) as exc:
        create_gateway(resolved(GatewayType.STRIPE))

    assert isinstance(exc.value, GatewayCommunicationError)
    assert not exc.value.is_transient
    assert built == []


def test_register_extension(monkeypatch):
    from infrastructure.external.payments import _REGISTRY

    monkeypatch.setitem(_REGISTRY, GatewayType.PAGARME, _REGISTRY[GatewayType.PAYMENT_GATEWAY_EXAMPLE])
    register_gateway(GatewayType.PAGARME, lambda config: ("pagarme", config.config.id))

    assert create_gateway(resolved(GatewayType.PAGARME)) == ("pagarme", "gw-1")
