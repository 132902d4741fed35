"""
Gateway configuration owned by a tenant (campaign creator).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from domain.payment.entity import PaymentMethod


class GatewayType(str, Enum):
    PAYMENT_GATEWAY_EXAMPLE = "PAYMENT_GATEWAY_EXAMPLE"
    GHOSTSPAY = "GHOSTSPAY"
    MERCADO_PAGO = "MERCADO_PAGO"
    STRIPE = "STRIPE"
    PAGARME = "PAGARME"


class GatewayStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING_VALIDATION = "PENDING_VALIDATION"
    ERROR = "ERROR"


@dataclass
class GatewaySettings:
    sandbox: bool = False
    base_url: Optional[str] = None
    postback_url: Optional[str] = None
    minimum_amount: Optional[int] = None
    # methods the tenant turned on for this account
    enabled_methods: tuple[PaymentMethod, ...] = (PaymentMethod.PIX,)
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.enabled_methods = tuple(PaymentMethod(m) for m in (self.enabled_methods or ()))

    def is_enabled(self, method: PaymentMethod) -> bool:
        return PaymentMethod(method) in self.enabled_methods


@dataclass
class GatewayConfiguration:
    """One processor account of a tenant.

    ``credentials`` holds the encrypted bundle as stored; decrypted
    credentials only exist inside the adapter built from it.
    """

    id: str
    tenant_id: str
    gateway_type: GatewayType
    name: str
    status: GatewayStatus = GatewayStatus.PENDING_VALIDATION
    is_default: bool = False
    credentials: Optional[str] = None
    settings: GatewaySettings = field(default_factory=GatewaySettings)
    last_validated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.gateway_type = GatewayType(self.gateway_type)
        self.status = GatewayStatus(self.status)
        if self.settings is None:
            self.settings = GatewaySettings()

    @property
    def is_active(self) -> bool:
        return self.status == GatewayStatus.ACTIVE

    def to_public_dict(self) -> dict[str, Any]:
        """Configuration without credentials, for listings."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "gateway_type": self.gateway_type.value,
            "name": self.name,
            "status": self.status.value,
            "is_default": self.is_default,
            "sandbox": self.settings.sandbox,
            "enabled_methods": [m.value for m in self.settings.enabled_methods],
            "has_credentials": bool(self.credentials),
            "last_validated_at": self.last_validated_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)


@dataclass
class ResolvedGatewayConfig:
    """Configuration plus decrypted credentials, handed to the gateway factory."""

    config: GatewayConfiguration
    credentials: dict[str, Any]

    @property
    def gateway_type(self) -> GatewayType:
        return self.config.gateway_type
