"""
Base gateway client implementing shared concerns: http, retry, logging, mapping.

Concrete processors subclass it and override paths or payload/response
mapping. Both supported processors speak the same purchase dialect
(``name/email/cpf/phone/amount/items``), so most of it lives here.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from application.dtos.payments import (
    CustomerSnapshotDTO,
    PaymentDetailsResponse,
    PaymentTransactionRequest,
    PaymentTransactionResponse,
    WebhookEvent,
)
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.gateway.entity import ResolvedGatewayConfig
from domain.payment.entity import PaymentMethod, PaymentStatus
from domain.payment.exceptions import (
    AmountBelowMinimum,
    CredentialError,
    GatewayCommunicationError,
    GatewayTimeout,
    InvalidWebhookSignature,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL, PaymentCode
from shared.masking import mask_document, mask_email, mask_phone, only_digits


logger = get_logger(__name__)

_REQUIRED_WEBHOOK_FIELDS = ("paymentId", "status", "paymentMethod", "customer", "items")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, GatewayCommunicationError) and exc.is_transient


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _as_str(value: Any) -> Optional[str]:
    """Processor ids arrive as strings or numbers."""
    if value is None or value == "":
        return None
    return str(value)


def _as_method(value: Any) -> Optional[PaymentMethod]:
    try:
        return PaymentMethod(str(value).upper()) if value else None
    except ValueError:
        return None


def format_phone(phone: Optional[str]) -> str:
    """Brazilian numbers to +55 E.164."""
    digits = only_digits(phone)
    if len(digits) == 13 and digits.startswith("55"):
        return f"+{digits}"
    return f"+55{digits}"


def canonical_payload(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(payload: dict[str, Any], secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), canonical_payload(payload), hashlib.sha256).hexdigest()


class BaseGatewayClient:
    gateway_type: str = "base"
    name: str = "Base gateway"
    default_base_url: Optional[str] = None
    purchase_path: str = "/transaction.purchase"
    details_path: str = "/transaction.getPayment"
    credentials_check_path: str = "/test"
    supported_methods: tuple[PaymentMethod, ...] = (PaymentMethod.PIX,)

    def __init__(
        self,
        config: ResolvedGatewayConfig,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self._credentials = config.credentials or {}
        settings = config.config.settings
        self._timeouts_cfg = timeouts or payment_settings.timeouts.model_dump()
        self._retry_cfg = retry or {"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff}
        self.base_url = (base_url or settings.base_url or self.default_base_url or "").rstrip("/")
        self.postback_url = settings.postback_url or payment_settings.endpoints.default_postback_url
        self.minimum_amount = settings.minimum_amount or payment_settings.pix.minimum_amount
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def gateway_id(self) -> str:
        return self.config.config.id

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            pool=self._timeouts_cfg["connect"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeouts,
                transport=self._transport,
            )
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    # ----- PaymentGateway -----

    def supports(self, method: PaymentMethod) -> bool:
        """Adapter implements ``method`` and the tenant enabled it on this account."""
        method = PaymentMethod(method)
        return method in self.supported_methods and self.config.config.settings.is_enabled(method)

    async def validate_credentials(self) -> bool:
        try:
            body = await self._request("GET", self.credentials_check_path)
        except (CredentialError, GatewayCommunicationError) as exc:
            self._log("gateway_credentials_invalid", level="warning", error=exc.message)
            return False
        return isinstance(body, dict) and body.get("status") == "ok"

    async def create_transaction(
        self, data: PaymentTransactionRequest, timeout: Optional[float] = None
    ) -> PaymentTransactionResponse:
        if data.payment_method == PaymentMethod.PIX and self.supports(data.payment_method):
            return await self.create_pix_transaction(data, timeout=timeout)
        raise GatewayCommunicationError(
            f"{self.name} does not accept {data.payment_method.value} on this account",
            gateway=self.gateway_type,
            status_code=400,
        )

    async def create_pix_transaction(
        self, data: PaymentTransactionRequest, timeout: Optional[float] = None
    ) -> PaymentTransactionResponse:
        self._ensure_credentials()
        self._ensure_minimum(data.amount)
        payload = self.build_purchase_payload(data)
        self._log("gateway_purchase_request", external_id=data.external_id, payload=self._masked(payload))
        body = await self._request("POST", self.purchase_path, json=payload, timeout=timeout)
        result = self.parse_purchase_response(body)
        self._log(
            "gateway_purchase_response",
            external_id=data.external_id,
            transaction_id=result.transaction_id,
            provider_status=result.provider_status,
        )
        return result

    async def get_payment_details(
        self, transaction_id: str, timeout: Optional[float] = None
    ) -> PaymentDetailsResponse:
        body = await self._request("GET", self.details_path, params={"id": transaction_id}, timeout=timeout)
        provider_status = str(body.get("status") or "")
        customer = body.get("customer") if isinstance(body.get("customer"), dict) else None
        return PaymentDetailsResponse(
            transaction_id=_as_str(body.get("id")) or transaction_id,
            status=self.map_status(provider_status),
            provider_status=provider_status or None,
            amount=body.get("amount"),
            method=_as_method(body.get("method") or body.get("paymentMethod")),
            customer=CustomerSnapshotDTO(
                name=customer.get("name"),
                email=mask_email(customer.get("email")),
                document=mask_document(_as_str(customer.get("cpf") or customer.get("document"))),
                phone=mask_phone(_as_str(customer.get("phone"))),
            )
            if customer
            else None,
            paid_at=_parse_datetime(body.get("approvedAt") or body.get("paidAt")),
            created_at=_parse_datetime(body.get("createdAt")),
            updated_at=_parse_datetime(body.get("updatedAt")),
            metadata={"pix_code": body.get("pixCode"), "pix_qr_code": body.get("pixQrCode")},
            raw=body,
        )

    def validate_webhook(self, payload: dict[str, Any], signature: Optional[str] = None) -> bool:
        if not isinstance(payload, dict):
            return False
        if not all(payload.get(key) for key in _REQUIRED_WEBHOOK_FIELDS):
            return False
        try:
            self._verify_signature(payload, signature)
        except InvalidWebhookSignature as exc:
            self._log("gateway_webhook_signature_invalid", level="warning", error=exc.message)
            return False
        return True

    def _verify_signature(self, payload: dict[str, Any], signature: Optional[str]) -> None:
        """HMAC-SHA256 over the canonical payload, when the account has a webhook secret."""
        secret = self._credentials.get("webhook_secret") or self._credentials.get("webhookSecret")
        if not secret:
            return
        if not signature:
            raise InvalidWebhookSignature("Webhook signature missing", gateway=self.gateway_type)
        if not hmac.compare_digest(sign_payload(payload, secret), signature.strip().lower()):
            raise InvalidWebhookSignature(gateway=self.gateway_type)

    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent:
        provider_status = str(payload.get("status") or "")
        amount = payload.get("netValue")
        if amount is None:
            amount = payload.get("totalValue")
        return WebhookEvent(
            gateway_type=self.gateway_type,
            status=self.map_status(provider_status),
            provider_status=provider_status or None,
            transaction_id=_as_str(payload.get("paymentId")),
            payment_code=_as_str(payload.get("externalId")),
            amount_paid=amount,
            occurred_at=_parse_datetime(payload.get("approvedAt") or payload.get("updatedAt")),
            raw=payload,
        )

    # ----- mapping hooks -----

    def build_purchase_payload(self, data: PaymentTransactionRequest) -> dict[str, Any]:
        items = data.items or []
        payload: dict[str, Any] = {
            "name": data.customer.name,
            "email": data.customer.email,
            "cpf": only_digits(data.customer.document),
            "phone": format_phone(data.customer.phone),
            "paymentMethod": data.payment_method.value,
            "amount": data.amount,
            "traceable": True,
            "items": [
                {
                    "unitPrice": item.unit_price,
                    "title": item.title,
                    "quantity": item.quantity,
                    "tangible": item.tangible,
                }
                for item in items
            ]
            or [{"unitPrice": data.amount, "title": data.description or "Tickets", "quantity": 1, "tangible": False}],
            "externalId": data.external_id,
        }
        postback = data.postback_url or self.postback_url
        if postback:
            payload["postbackUrl"] = postback
        return payload

    def parse_purchase_response(self, body: dict[str, Any]) -> PaymentTransactionResponse:
        provider_status = str(body.get("status") or "")
        return PaymentTransactionResponse(
            success=bool(body.get("id")),
            transaction_id=_as_str(body.get("id")),
            status=self.map_status(provider_status),
            provider_status=provider_status or None,
            pix_code=body.get("pixCode"),
            pix_qr_code=body.get("pixQrCode"),
            amount=body.get("amount"),
            expires_at=_parse_datetime(body.get("expiresAt")),
            metadata={"custom_id": body.get("customId"), "method": body.get("method")},
            raw=body,
        )

    def map_status(self, provider_status: str) -> PaymentStatus:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.gateway_type, {})
        return PaymentStatus(mapping.get((provider_status or "").upper(), PaymentStatus.PENDING.value))

    # ----- transport -----

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": self._secret_key(), "Content-Type": "application/json"}

    def _secret_key(self) -> str:
        return self._credentials.get("secretKey") or self._credentials.get("secret_key") or ""

    def _ensure_credentials(self) -> None:
        if not self._secret_key():
            raise CredentialError("Gateway credentials not configured", gateway=self.gateway_type)
        if not self.base_url:
            raise CredentialError("Gateway base URL not configured", gateway=self.gateway_type)

    def _ensure_minimum(self, amount: int) -> None:
        if amount < self.minimum_amount:
            raise AmountBelowMinimum(amount, self.minimum_amount)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        self._ensure_credentials()
        deadline = timeout if timeout is not None else self._timeouts_cfg["total"]

        async def _send() -> dict[str, Any]:
            async with self.client() as c:
                try:
                    resp = await c.request(method, path, json=json, params=params, headers=self._auth_headers())
                except httpx.TimeoutException as exc:
                    raise GatewayTimeout(gateway=self.gateway_type) from exc
                except httpx.TransportError as exc:
                    raise GatewayCommunicationError(
                        f"Gateway unreachable: {exc}",
                        gateway=self.gateway_type,
                        code=PaymentCode.PROVIDER_RECOVERABLE,
                    ) from exc
            return self._handle_response(resp)

        try:
            return await asyncio.wait_for(self._retry(_send), timeout=deadline)
        except asyncio.TimeoutError as exc:
            raise GatewayTimeout(gateway=self.gateway_type) from exc

    def _handle_response(self, resp: httpx.Response) -> dict[str, Any]:
        if resp.status_code < 200 or resp.status_code >= 300:
            body = resp.text
            self._log(
                "gateway_http_error",
                level="warning",
                status_code=resp.status_code,
                body=body[:500],
            )
            code, error_type = PaymentCode.PROVIDER_ERROR, "GatewayCommunicationError"
            if resp.status_code == 429:
                code, error_type = PaymentCode.RATE_LIMITED, "GatewayRateLimited"
            elif resp.status_code >= 500:
                code = PaymentCode.PROVIDER_RECOVERABLE
            raise GatewayCommunicationError(
                f"Gateway API error ({resp.status_code})",
                gateway=self.gateway_type,
                status_code=resp.status_code,
                body=body,
                code=code,
                error_type=error_type,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise GatewayCommunicationError(
                "Gateway returned a non-JSON body",
                gateway=self.gateway_type,
                status_code=resp.status_code,
                body=resp.text,
            ) from exc
        if not isinstance(data, dict):
            raise GatewayCommunicationError(
                "Gateway returned an unexpected body",
                gateway=self.gateway_type,
                status_code=resp.status_code,
                body=data,
            )
        return data

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], max=2.0),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                return await fn()

    # ----- logging -----

    @staticmethod
    def _masked(payload: dict[str, Any]) -> dict[str, Any]:
        masked = dict(payload)
        masked["email"] = mask_email(masked.get("email"))
        masked["cpf"] = mask_document(masked.get("cpf"))
        masked["phone"] = mask_phone(masked.get("phone"))
        return masked

    def _log(self, event: str, level: str = "info", **kwargs) -> None:
        getattr(logger, level)(
            event,
            gateway=self.gateway_type,
            gateway_id=self.gateway_id,
            **kwargs,
        )
