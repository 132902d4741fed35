"""
Gateway configuration repository interface.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import GatewayConfiguration


class GatewayConfigurationRepository(ABC):

    @abstractmethod
    async def add(self, config: GatewayConfiguration) -> GatewayConfiguration:
        pass

    @abstractmethod
    async def get(self, tenant_id: str, gateway_id: str) -> Optional[GatewayConfiguration]:
        pass

    @abstractmethod
    async def get_default_active(self, tenant_id: str) -> Optional[GatewayConfiguration]:
        """Active configuration flagged as default for the tenant."""
        pass

    @abstractmethod
    async def list_by_tenant(self, tenant_id: str, *, active_only: bool = False) -> List[GatewayConfiguration]:
        pass

    @abstractmethod
    async def set_default(self, tenant_id: str, gateway_id: str) -> bool:
        """Flag one configuration as default and clear the flag on the others."""
        pass
