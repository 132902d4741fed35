"""
Gateway configuration repository backed by SQLAlchemy.
"""
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.gateway.entity import (
    GatewayConfiguration,
    GatewaySettings,
    GatewayStatus,
    GatewayType,
)
from domain.gateway.repository import GatewayConfigurationRepository
from infrastructure.models.gateway_configuration import GatewayConfigurationModel


logger = get_logger(__name__)

_SETTINGS_FIELDS = ("sandbox", "base_url", "postback_url", "minimum_amount", "enabled_methods")


class SQLAlchemyGatewayConfigurationRepository(GatewayConfigurationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: GatewayConfigurationModel) -> GatewayConfiguration:
        raw = dict(model.settings or {})
        settings = GatewaySettings(
            **{k: raw.pop(k) for k in _SETTINGS_FIELDS if k in raw},
            extra=raw,
        )
        return GatewayConfiguration(
            id=model.id,
            tenant_id=model.tenant_id,
            gateway_type=GatewayType(model.gateway_type),
            name=model.name,
            status=GatewayStatus(model.status),
            is_default=bool(model.is_default),
            credentials=model.credentials,
            settings=settings,
            last_validated_at=model.last_validated_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: GatewayConfiguration) -> GatewayConfigurationModel:
        settings = {k: getattr(entity.settings, k) for k in _SETTINGS_FIELDS}
        settings["enabled_methods"] = [m.value for m in entity.settings.enabled_methods]
        settings.update(entity.settings.extra or {})
        return GatewayConfigurationModel(
            id=entity.id,
            tenant_id=entity.tenant_id,
            gateway_type=entity.gateway_type.value,
            name=entity.name,
            status=entity.status.value,
            is_default=entity.is_default,
            credentials=entity.credentials,
            settings=settings,
            last_validated_at=entity.last_validated_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def add(self, config: GatewayConfiguration) -> GatewayConfiguration:
        model = self._to_model(config)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "gateway_configuration_created",
            gateway_id=model.id,
            tenant_id=model.tenant_id,
            gateway_type=model.gateway_type,
        )
        return self._to_entity(model)

    async def get(self, tenant_id: str, gateway_id: str) -> Optional[GatewayConfiguration]:
        result = await self.session.execute(
            select(GatewayConfigurationModel).where(
                GatewayConfigurationModel.id == gateway_id,
                GatewayConfigurationModel.tenant_id == tenant_id,
            )
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_default_active(self, tenant_id: str) -> Optional[GatewayConfiguration]:
        result = await self.session.execute(
            select(GatewayConfigurationModel)
            .where(
                GatewayConfigurationModel.tenant_id == tenant_id,
                GatewayConfigurationModel.status == GatewayStatus.ACTIVE.value,
                GatewayConfigurationModel.is_default.is_(True),
            )
            .order_by(GatewayConfigurationModel.created_at.asc())
            .limit(1)
        )
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def list_by_tenant(self, tenant_id: str, *, active_only: bool = False) -> List[GatewayConfiguration]:
        stmt = select(GatewayConfigurationModel).where(GatewayConfigurationModel.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(GatewayConfigurationModel.status == GatewayStatus.ACTIVE.value)
        stmt = stmt.order_by(GatewayConfigurationModel.created_at.asc())
        result = await self.session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def set_default(self, tenant_id: str, gateway_id: str) -> bool:
        target = await self.get(tenant_id, gateway_id)
        if target is None:
            return False
        await self.session.execute(
            update(GatewayConfigurationModel)
            .where(
                GatewayConfigurationModel.tenant_id == tenant_id,
                GatewayConfigurationModel.id != gateway_id,
            )
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(GatewayConfigurationModel)
            .where(GatewayConfigurationModel.id == gateway_id)
            .values(is_default=True)
            .execution_options(synchronize_session=False)
        )
        return True
