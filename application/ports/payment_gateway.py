"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements one adapter
per processor and the factory picks it by gateway type.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    PaymentDetailsResponse,
    PaymentTransactionRequest,
    PaymentTransactionResponse,
    WebhookEvent,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Processor adapter.

    Errors surface as CredentialError, AmountBelowMinimum or
    GatewayCommunicationError; ``timeout`` is in seconds and overrides the
    configured total timeout for one call.
    """

    gateway_type: str
    gateway_id: str
    name: str
    minimum_amount: int

    async def validate_credentials(self) -> bool: ...

    async def create_transaction(
        self, data: PaymentTransactionRequest, timeout: Optional[float] = None
    ) -> PaymentTransactionResponse: ...

    async def create_pix_transaction(
        self, data: PaymentTransactionRequest, timeout: Optional[float] = None
    ) -> PaymentTransactionResponse: ...

    async def get_payment_details(
        self, transaction_id: str, timeout: Optional[float] = None
    ) -> PaymentDetailsResponse: ...

    def validate_webhook(self, payload: dict[str, Any], signature: Optional[str] = None) -> bool: ...

    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent: ...

    async def aclose(self) -> None: ...
