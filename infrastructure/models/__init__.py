"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import PaymentModel
from .gateway_configuration import GatewayConfigurationModel

__all__ = [
    "Base",
    "metadata",
    "PaymentModel",
    "GatewayConfigurationModel",
]
