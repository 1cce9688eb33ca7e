"""
Payments API routes.

Webhook and redirect are the two gateway-facing entry points; status,
reconcile and cancel are operator endpoints; initiate starts a checkout.
Keep this thin: the guard and services own every state change.
"""
from __future__ import annotations

import ipaddress
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from api.dependencies import (
    get_payment_service,
    get_redirect_resolver,
    get_webhook_ingestor,
)
from application.dtos.orders import CancelOrderRequest, InitiatePaymentRequest, RedirectResolution
from application.services.payment_service import PaymentService
from application.services.redirect_service import RedirectResolver
from application.services.webhook_service import WebhookIngestor
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _ip_allowed(remote_ip: Optional[str], allowlist: list[str]) -> bool:
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.post("/webhooks/phonepe", summary="PhonePe server-to-server callback")
async def phonepe_webhook(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
):
    # Optional IP allowlist
    allowlist = payment_settings.webhook.ip_allowlist or []
    if allowlist:
        remote_ip = request.client.host if request.client else None
        if not _ip_allowed(remote_ip, allowlist):
            logger.warning("webhook_ip_not_allowed", remote_ip=remote_ip)
            raise HTTPException(status_code=403, detail="Source address not allowed")

    raw_body = await request.body()
    result = await ingestor.ingest(authorization, raw_body)
    # 200 acknowledges receipt; the state change (if any) is already committed
    return success_response(data=result.model_dump(mode="json"), message="Webhook received")


@router.get("/phonepe/redirect", summary="User return from the PhonePe checkout page")
async def phonepe_redirect(
    token: Optional[str] = Query(default=None),
    order_ref: Optional[str] = Query(default=None, alias="orderId"),
    resolver: RedirectResolver = Depends(get_redirect_resolver),
):
    try:
        resolution = await resolver.resolve(token, order_ref)
    except Exception as exc:
        # The browser always lands on the confirmation page
        logger.error("redirect_resolve_failed", order_ref=order_ref, error=str(exc), exc_info=True)
        resolution = RedirectResolution(status="pending", order_ref=order_ref)
    return RedirectResponse(url=resolver.confirmation_url(resolution), status_code=307)


@router.get("/orders/{order_ref}/status", summary="Stored payment state")
async def order_status(order_ref: str, service: PaymentService = Depends(get_payment_service)):
    view = await service.get_order_status(order_ref)
    return success_response(data=view.model_dump(mode="json"), message="Order status")


@router.post("/orders/{order_ref}/reconcile", summary="Re-check an order against the gateway")
async def reconcile_order(order_ref: str, service: PaymentService = Depends(get_payment_service)):
    outcome = await service.reconcile(order_ref, source="admin")
    return success_response(data=outcome.model_dump(mode="json"), message="Order reconciled")


@router.post("/orders/{order_ref}/cancel", summary="Cancel a pending order")
async def cancel_order(
    order_ref: str,
    payload: Optional[CancelOrderRequest] = Body(default=None),
    service: PaymentService = Depends(get_payment_service),
):
    reason = payload.reason if payload else CancelOrderRequest().reason
    outcome = await service.cancel_order(order_ref, reason=reason, source="admin")
    return success_response(data=outcome.model_dump(mode="json"), message="Order cancelled")


@router.post("/phonepe/initiate", summary="Start a PhonePe checkout")
async def initiate_payment(payload: InitiatePaymentRequest, service: PaymentService = Depends(get_payment_service)):
    result = await service.initiate_payment(payload.order_ref, payload.amount)
    return success_response(data=result.model_dump(mode="json"), message="Payment initiated")
