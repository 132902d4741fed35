"""
API dependencies.
"""
from application.services.gateway_manager import GatewayManager
from application.services.payment_service import PaymentLifecycleService
from infrastructure.composition import build_gateway_manager, build_payment_lifecycle


async def get_gateway_manager() -> GatewayManager:
    return build_gateway_manager()


async def get_payment_lifecycle() -> PaymentLifecycleService:
    return build_payment_lifecycle()
