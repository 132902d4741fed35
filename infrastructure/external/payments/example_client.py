"""
Adapter for the reference "Payment Gateway Example" processor.

API: ``POST /transaction.purchase``, ``GET /transaction.getPayment?id=``,
``GET /test``; the secret key goes verbatim in ``Authorization``.
"""
from __future__ import annotations

from core.settings import payment_settings
from domain.gateway.entity import GatewayType
from infrastructure.external.payments.base import BaseGatewayClient


class ExampleGatewayClient(BaseGatewayClient):
    gateway_type = GatewayType.PAYMENT_GATEWAY_EXAMPLE.value
    name = "Payment Gateway Example"
    default_base_url = payment_settings.endpoints.example_base_url
