"""
Gateway factory: one builder per gateway type.
"""
from __future__ import annotations

from typing import Callable, Dict

from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.gateway.entity import GatewayType, ResolvedGatewayConfig
from domain.payment.exceptions import UnsupportedGatewayType


logger = get_logger(__name__)

GatewayBuilder = Callable[[ResolvedGatewayConfig], PaymentGateway]


def _build_example(config: ResolvedGatewayConfig) -> PaymentGateway:
    from .example_client import ExampleGatewayClient
    return ExampleGatewayClient(config)


def _build_ghostspay(config: ResolvedGatewayConfig) -> PaymentGateway:
    from .ghostspay_client import GhostsPayClient
    return GhostsPayClient(config)


_REGISTRY: Dict[GatewayType, GatewayBuilder] = {
    GatewayType.PAYMENT_GATEWAY_EXAMPLE: _build_example,
    GatewayType.GHOSTSPAY: _build_ghostspay,
}


def register_gateway(gateway_type: GatewayType, builder: GatewayBuilder) -> None:
    _REGISTRY[GatewayType(gateway_type)] = builder


def supported_gateway_types() -> list[GatewayType]:
    return list(_REGISTRY)


def create_gateway(config: ResolvedGatewayConfig) -> PaymentGateway:
    """Build the adapter for ``config.gateway_type``.

    Unregistered types raise UnsupportedGatewayType before anything is built.
    """
    try:
        gateway_type = GatewayType(config.gateway_type)
    except ValueError:
        raise UnsupportedGatewayType(str(config.gateway_type))
    builder = _REGISTRY.get(gateway_type)
    if builder is None:
        logger.warning("gateway_type_unsupported", gateway_type=gateway_type.value, gateway_id=config.config.id)
        raise UnsupportedGatewayType(gateway_type.value)
    return builder(config)
