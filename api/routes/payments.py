"""
Payments API routes.

Thin layer over PaymentLifecycleService and GatewayManager: no processor
details here. Static paths are declared before ``/{payment_code}``.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from api.dependencies import get_gateway_manager, get_payment_lifecycle
from application.dtos.payments import CreatePixPayment, PaymentDTO
from application.services.gateway_manager import GatewayManager
from application.services.payment_service import PaymentLifecycleService
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response
from core.settings import payment_settings


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/webhooks/{tenant_id}", summary="Processor webhook", response_model=ApiResponse[dict])
async def payments_webhook(
    tenant_id: str,
    request: Request,
    gateway_id: Optional[str] = Query(default=None),
    lifecycle: PaymentLifecycleService = Depends(get_payment_lifecycle),
):
    """Always acknowledged with 200; the reason a webhook was dropped is only logged."""
    raw_body = await request.body()
    try:
        payload: Any = json.loads(raw_body or b"{}")
    except ValueError:
        logger.warning("payment_webhook_invalid_json", tenant_id=tenant_id, size=len(raw_body))
        return success_response(data={"accepted": False, "applied": False}, message="Received")
    if not isinstance(payload, dict):
        logger.warning("payment_webhook_invalid_body", tenant_id=tenant_id)
        return success_response(data={"accepted": False, "applied": False}, message="Received")

    signature = request.headers.get(payment_settings.webhook.signature_header)
    outcome = await lifecycle.handle_webhook(tenant_id, payload, signature=signature, gateway_id=gateway_id)
    return success_response(
        data={"accepted": outcome.accepted, "applied": outcome.applied},
        message="Received",
    )


@router.get("/gateways/{tenant_id}", summary="List tenant gateways", response_model=ApiResponse[list])
async def list_gateways(
    tenant_id: str,
    manager: GatewayManager = Depends(get_gateway_manager),
):
    """Configured gateways without credentials."""
    gateways = await manager.list_gateways(tenant_id)
    return success_response(data=gateways)


@router.post("/pix", summary="Create PIX payment", response_model=ApiResponse[PaymentDTO])
async def create_pix_payment(
    payload: CreatePixPayment,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=128),
    gateway_id: Optional[str] = Query(default=None),
    lifecycle: PaymentLifecycleService = Depends(get_payment_lifecycle),
):
    """
    Create a payment and register it with the tenant's processor.

    - **creator_id**: tenant whose gateway receives the payment
    - **amount**: total in centavos
    - **Idempotency-Key**: repeated keys return the stored payment
    """
    payment = await lifecycle.create(payload, idempotency_key=idempotency_key, gateway_id=gateway_id)
    return success_response(data=PaymentDTO.from_entity(payment), message="Payment created")


@router.get("/{payment_code}", summary="Get payment", response_model=ApiResponse[PaymentDTO])
async def get_payment(
    payment_code: str,
    lifecycle: PaymentLifecycleService = Depends(get_payment_lifecycle),
):
    payment = await lifecycle.get_by_code(payment_code)
    return success_response(data=PaymentDTO.from_entity(payment))


@router.post("/{payment_code}/cancel", summary="Cancel payment", response_model=ApiResponse[PaymentDTO])
async def cancel_payment(
    payment_code: str,
    lifecycle: PaymentLifecycleService = Depends(get_payment_lifecycle),
):
    payment = await lifecycle.cancel(payment_code)
    return success_response(data=PaymentDTO.from_entity(payment), message="Payment canceled")


@router.post("/{payment_code}/refund", summary="Refund payment", response_model=ApiResponse[PaymentDTO])
async def refund_payment(
    payment_code: str,
    lifecycle: PaymentLifecycleService = Depends(get_payment_lifecycle),
):
    """Marks an approved payment refunded; the processor is not called."""
    payment = await lifecycle.refund(payment_code)
    return success_response(data=PaymentDTO.from_entity(payment), message="Payment refunded")
