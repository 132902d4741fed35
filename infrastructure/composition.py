"""
Composition root shared by the API and the Celery worker.

Wires the application services to their infrastructure adapters.
"""
from __future__ import annotations

from functools import lru_cache

from application.services.gateway_manager import GatewayManager
from application.services.payment_service import PaymentLifecycleService
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.exceptions import CredentialError
from domain.services.entity_code import CodeGenerator, StaticWorkerIdSource
from infrastructure.external.payments import create_gateway
from infrastructure.external.vault import FernetCredentialVault
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


@lru_cache
def get_code_generator() -> CodeGenerator:
    """One generator per process so the sequence state is shared."""
    worker_source = None
    if settings.ENTITY_CODE_WORKER_ID is not None:
        worker_source = StaticWorkerIdSource(settings.ENTITY_CODE_WORKER_ID)
    return CodeGenerator(settings.ENTITY_CODE_SECRET, worker_source=worker_source)


@lru_cache
def get_credential_vault() -> FernetCredentialVault:
    key = payment_settings.vault_key
    if not key:
        if not settings.is_development:
            raise CredentialError("PAYMENT__VAULT_KEY is not configured")
        key = FernetCredentialVault.generate_key()
        logger.warning("credential_vault_ephemeral_key", environment=settings.ENVIRONMENT)
    return FernetCredentialVault(key)


def build_gateway_manager() -> GatewayManager:
    return GatewayManager(
        uow_factory=SQLAlchemyUnitOfWork,
        vault=get_credential_vault(),
        factory=create_gateway,
    )


def build_payment_lifecycle() -> PaymentLifecycleService:
    return PaymentLifecycleService(
        uow_factory=SQLAlchemyUnitOfWork,
        gateway_manager=build_gateway_manager(),
        code_generator=get_code_generator(),
        pix_expiration_minutes=payment_settings.pix.expiration_minutes,
        duplicate_window_seconds=payment_settings.duplicate_window_seconds,
    )
