"""
GhostsPay adapter.

Same purchase dialect as the example gateway, served under ``/api/v1``.
The purchase response also reports the seller net amount and the fees
charged to seller and platform, and echoes our payment code as ``externalId``.
"""
from __future__ import annotations

from typing import Any

from application.dtos.payments import PaymentTransactionRequest, PaymentTransactionResponse
from core.settings import payment_settings
from domain.gateway.entity import GatewayType
from infrastructure.external.payments.base import BaseGatewayClient


class GhostsPayClient(BaseGatewayClient):
    gateway_type = GatewayType.GHOSTSPAY.value
    name = "GhostsPay"
    default_base_url = payment_settings.endpoints.ghostspay_base_url
    purchase_path = "/api/v1/transaction.purchase"
    details_path = "/api/v1/transaction.getPayment"
    credentials_check_path = "/api/v1/test"

    def build_purchase_payload(self, data: PaymentTransactionRequest) -> dict[str, Any]:
        payload = super().build_purchase_payload(data)
        if data.expires_in_minutes:
            payload["expiresInMinutes"] = data.expires_in_minutes
        return payload

    def parse_purchase_response(self, body: dict[str, Any]) -> PaymentTransactionResponse:
        result = super().parse_purchase_response(body)
        return result.model_copy(
            update={
                "amount_seller": body.get("amountSeller"),
                "tax_seller": body.get("taxSeller"),
                "tax_platform": body.get("taxPlatform"),
            }
        )
