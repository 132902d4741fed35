"""
Payment error taxonomy.

Every error carries a PaymentCode so core.exceptions can map it to an HTTP
status without knowing the concrete class.
"""
from __future__ import annotations

from typing import Any, Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class InvalidStateTransition(BusinessException):
    def __init__(self, current: str, requested: str, *, payment_code: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(
            code=PaymentCode.INVALID_STATE_TRANSITION,
            message=f"Cannot move payment from {current} to {requested}",
            error_type="InvalidStateTransition",
            details={"current": current, "requested": requested, "payment_code": payment_code},
            field="status",
        )


class DuplicateIdempotencyKey(BusinessException):
    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(
            code=PaymentCode.DUPLICATE_IDEMPOTENCY_KEY,
            message="A payment with this idempotency key already exists",
            error_type="DuplicateIdempotencyKey",
            details={"idempotency_key": idempotency_key},
        )


class DuplicatePaymentAttempt(BusinessException):
    """Same buyer tried to pay the same campaign and amount again within the guard window."""

    def __init__(self, existing_payment_code: str):
        super().__init__(
            code=PaymentCode.DUPLICATE_PAYMENT_ATTEMPT,
            message="A similar payment was created a moment ago. Wait before trying again",
            error_type="DuplicatePaymentAttempt",
            details={"existing_payment_code": existing_payment_code},
        )


class PaymentNotFound(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message=f"Payment not found: {identifier}",
            error_type="PaymentNotFound",
            details={"identifier": identifier},
        )


class CredentialError(BusinessException):
    def __init__(self, message: str = "Gateway credentials are missing or invalid", *, gateway: Optional[str] = None):
        super().__init__(
            code=PaymentCode.CREDENTIAL_ERROR,
            message=message,
            error_type="CredentialError",
            details={"gateway": gateway} if gateway else None,
        )


class NoGatewayConfigured(BusinessException):
    def __init__(self, tenant_id: str, gateway_id: Optional[str] = None):
        details: dict[str, Any] = {"tenant_id": tenant_id}
        if gateway_id:
            details["gateway_id"] = gateway_id
        super().__init__(
            code=PaymentCode.NO_GATEWAY_CONFIGURED,
            message="No active payment gateway configured",
            error_type="NoGatewayConfigured",
            details=details,
        )


class AmountBelowMinimum(BusinessException):
    def __init__(self, amount: int, minimum: int):
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            code=PaymentCode.AMOUNT_BELOW_MINIMUM,
            message=f"Amount {amount} is below the minimum of {minimum}",
            error_type="AmountBelowMinimum",
            details={"amount": amount, "minimum": minimum},
            field="amount",
        )


class GatewayCommunicationError(BusinessException):
    """Processor call failed.

    ``status_code`` is None when no HTTP response was received (timeout,
    connection reset). Those, 429 and 5xx are transient; other 4xx are not.
    """

    def __init__(
        self,
        message: str,
        *,
        gateway: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Any = None,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "GatewayCommunicationError",
    ):
        self.gateway = gateway
        self.status_code = status_code
        self.body = body
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details={"gateway": gateway, "status_code": status_code},
        )

    @property
    def is_transient(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class GatewayTimeout(GatewayCommunicationError):
    def __init__(self, message: str = "Gateway request timed out", *, gateway: Optional[str] = None):
        super().__init__(
            message,
            gateway=gateway,
            code=PaymentCode.TIMEOUT,
            error_type="GatewayTimeout",
        )


class UnsupportedGatewayType(GatewayCommunicationError):
    def __init__(self, gateway_type: str):
        self.gateway_type = gateway_type
        super().__init__(
            f"Unsupported gateway type: {gateway_type}",
            gateway=gateway_type,
            status_code=400,
            code=PaymentCode.UNSUPPORTED_GATEWAY,
            error_type="UnsupportedGatewayType",
        )


class InvalidWebhookSignature(BusinessException):
    def __init__(self, message: str = "Webhook signature mismatch", *, gateway: Optional[str] = None):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="InvalidWebhookSignature",
            details={"gateway": gateway} if gateway else None,
        )


class CodeValidationFailure(BusinessException):
    def __init__(self, code_value: str, reason: str):
        super().__init__(
            code=PaymentCode.CODE_VALIDATION_FAILURE,
            message=f"Invalid entity code: {reason}",
            error_type="CodeValidationFailure",
            details={"code": code_value, "reason": reason},
            field="code",
        )


class DuplicatePaymentCode(BusinessException):
    """Generated payment code already stored (two workers shared an id and a slot)."""

    def __init__(self, payment_code: str):
        self.payment_code = payment_code
        super().__init__(
            code=PaymentCode.DUPLICATE_PAYMENT_CODE,
            message="Payment code already in use",
            error_type="DuplicatePaymentCode",
            details={"payment_code": payment_code},
        )
