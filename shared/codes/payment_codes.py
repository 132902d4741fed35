"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    CREDENTIAL_ERROR = 60005
    UNSUPPORTED_GATEWAY = 60006

    # Lifecycle errors (61xxx)
    NO_GATEWAY_CONFIGURED = 61000
    AMOUNT_BELOW_MINIMUM = 61001
    INVALID_STATE_TRANSITION = 61002
    DUPLICATE_IDEMPOTENCY_KEY = 61003
    DUPLICATE_PAYMENT_ATTEMPT = 61004
    PAYMENT_NOT_FOUND = 61005
    CODE_VALIDATION_FAILURE = 61006
    DUPLICATE_PAYMENT_CODE = 61007


# Provider→internal status mapping, keyed by gateway type value.
# Unknown provider statuses fall back to PENDING.
PROVIDER_STATUS_TO_INTERNAL = {
    "PAYMENT_GATEWAY_EXAMPLE": {
        "PENDING": "PENDING",
        "WAITING_PAYMENT": "PENDING",
        "APPROVED": "APPROVED",
        "PAID": "APPROVED",
        "DECLINED": "DECLINED",
        "REFUNDED": "REFUNDED",
        "CANCELED": "CANCELED",
        "EXPIRED": "EXPIRED",
    },
    "GHOSTSPAY": {
        "PENDING": "PENDING",
        "PROCESSING": "INITIALIZED",
        "AUTHORIZED": "INITIALIZED",
        "APPROVED": "APPROVED",
        "REJECTED": "DECLINED",
        "DECLINED": "DECLINED",
        "FAILED": "FAILED",
        "REFUNDED": "REFUNDED",
        "CHARGEBACK": "REFUNDED",
        "CANCELED": "CANCELED",
        "CANCELLED": "CANCELED",
        "EXPIRED": "EXPIRED",
    },
}
