"""
Per-tenant gateway selection.

Resolves a tenant's stored gateway configuration into a ready adapter:
configuration row -> credential vault -> gateway factory. Adapters returned
to callers own an HTTP client; callers close them with ``aclose()``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from application.dtos.payments import (
    PaymentDetailsResponse,
    PaymentTransactionRequest,
    PaymentTransactionResponse,
)
from application.ports.credential_vault import CredentialVault
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.gateway.entity import GatewayConfiguration, ResolvedGatewayConfig
from domain.payment.exceptions import NoGatewayConfigured


logger = get_logger(__name__)

GatewayFactory = Callable[[ResolvedGatewayConfig], PaymentGateway]


@dataclass
class WebhookValidation:
    is_valid: bool
    gateway: Optional[PaymentGateway] = None
    config: Optional[GatewayConfiguration] = None


class GatewayManager:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        vault: CredentialVault,
        factory: GatewayFactory,
    ) -> None:
        self._uow_factory = uow_factory
        self._vault = vault
        self._factory = factory

    def build(self, config: GatewayConfiguration) -> PaymentGateway:
        """Decrypt credentials and build the adapter. Raises CredentialError / UnsupportedGatewayType."""
        credentials = self._vault.decrypt(config.credentials)
        return self._factory(ResolvedGatewayConfig(config=config, credentials=credentials))

    async def get_default_gateway(self, tenant_id: str) -> Optional[PaymentGateway]:
        """Active default gateway, else the oldest active one, else None."""
        async with self._uow_factory(readonly=True) as uow:
            config = await uow.gateway_repository.get_default_active(tenant_id)
            if config is None:
                active = await uow.gateway_repository.list_by_tenant(tenant_id, active_only=True)
                config = active[0] if active else None
        if config is None:
            return None
        return self.build(config)

    async def get_gateway_by_id(self, tenant_id: str, gateway_id: str) -> Optional[PaymentGateway]:
        async with self._uow_factory(readonly=True) as uow:
            config = await uow.gateway_repository.get(tenant_id, gateway_id)
        if config is None or not config.is_active:
            return None
        return self.build(config)

    async def require_gateway(self, tenant_id: str, gateway_id: Optional[str] = None) -> PaymentGateway:
        if gateway_id:
            gateway = await self.get_gateway_by_id(tenant_id, gateway_id)
        else:
            gateway = await self.get_default_gateway(tenant_id)
        if gateway is None:
            logger.warning("gateway_not_configured", tenant_id=tenant_id, gateway_id=gateway_id)
            raise NoGatewayConfigured(tenant_id, gateway_id)
        return gateway

    async def create_pix_transaction(
        self,
        tenant_id: str,
        data: PaymentTransactionRequest,
        gateway_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> PaymentTransactionResponse:
        gateway = await self.require_gateway(tenant_id, gateway_id)
        try:
            return await gateway.create_pix_transaction(data, timeout=timeout)
        finally:
            await gateway.aclose()

    async def get_payment_details(
        self,
        tenant_id: str,
        transaction_id: str,
        gateway_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> PaymentDetailsResponse:
        gateway = await self.require_gateway(tenant_id, gateway_id)
        try:
            return await gateway.get_payment_details(transaction_id, timeout=timeout)
        finally:
            await gateway.aclose()

    async def validate_webhook(
        self,
        tenant_id: str,
        payload: dict[str, Any],
        signature: Optional[str] = None,
        gateway_id: Optional[str] = None,
    ) -> WebhookValidation:
        """Find the tenant gateway that accepts ``payload``.

        Without ``gateway_id`` every active configuration is tried in turn,
        since processor payloads do not say which account they belong to.
        Webhook URLs that carry ``gateway_id`` skip the scan.
        """
        async with self._uow_factory(readonly=True) as uow:
            if gateway_id:
                config = await uow.gateway_repository.get(tenant_id, gateway_id)
                configs = [config] if config is not None and config.is_active else []
            else:
                configs = await uow.gateway_repository.list_by_tenant(tenant_id, active_only=True)

        for config in configs:
            try:
                gateway = self.build(config)
            except BusinessException as exc:
                logger.warning(
                    "webhook_gateway_unusable",
                    tenant_id=tenant_id,
                    gateway_id=config.id,
                    gateway_type=config.gateway_type.value,
                    error=exc.message,
                )
                continue
            if gateway.validate_webhook(payload, signature):
                return WebhookValidation(is_valid=True, gateway=gateway, config=config)
            await gateway.aclose()

        logger.info("webhook_no_gateway_matched", tenant_id=tenant_id, candidates=len(configs))
        return WebhookValidation(is_valid=False)

    async def list_gateways(self, tenant_id: str) -> list[dict[str, Any]]:
        """Tenant configurations without credentials."""
        async with self._uow_factory(readonly=True) as uow:
            configs = await uow.gateway_repository.list_by_tenant(tenant_id)
        return [c.to_public_dict() for c in configs]

    async def has_active_gateway(self, tenant_id: str) -> bool:
        async with self._uow_factory(readonly=True) as uow:
            active = await uow.gateway_repository.list_by_tenant(tenant_id, active_only=True)
        return bool(active)

    async def set_default_gateway(self, tenant_id: str, gateway_id: str) -> None:
        async with self._uow_factory() as uow:
            changed = await uow.gateway_repository.set_default(tenant_id, gateway_id)
        if not changed:
            raise NoGatewayConfigured(tenant_id, gateway_id)
        logger.info("gateway_default_changed", tenant_id=tenant_id, gateway_id=gateway_id)
