"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so payment knobs can be tuned with
the PAYMENT__ prefix without touching application settings.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 5.0
    write: float = 5.0
    total: float = 10.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    signature_header: str = "X-Webhook-Signature"


class PixSettings(BaseModel):
    expiration_minutes: int = 10
    # R$ 5,00 in centavos
    minimum_amount: int = 500


class GatewayEndpoints(BaseModel):
    example_base_url: str = "https://example.com.br/api/v1"
    ghostspay_base_url: Optional[str] = None
    default_postback_url: Optional[str] = None


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    pix: PixSettings = Field(default_factory=PixSettings)
    endpoints: GatewayEndpoints = Field(default_factory=GatewayEndpoints)

    sweep_interval_seconds: int = 60
    # 0 disables the recent duplicate purchase guard
    duplicate_window_seconds: int = 300

    # Fernet key used to decrypt stored gateway credentials
    vault_key: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
