"""
Webhook ingestor for gateway server-to-server callbacks.

Authenticity is checked before anything else; a callback that fails
verification or cannot be parsed raises and is answered with 400. Every
authenticated callback is acknowledged unless the transition itself could
not be completed, in which case the error propagates so the gateway
redelivers.
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.orders import WebhookResult
from application.dtos.payments import CHECKOUT_ORDER_COMPLETED, CHECKOUT_ORDER_FAILED
from application.ports.payment_gateway import GatewayClient
from application.services.reconciliation import ReconciliationGuard
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


class WebhookIngestor:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: GatewayClient,
        guard: ReconciliationGuard,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._guard = guard

    async def ingest(self, authorization: Optional[str], body: bytes) -> WebhookResult:
        event = self._gateway.verify_callback(authorization, body)
        log = logger.bind(provider=event.provider, event_type=event.event_type, order_ref=event.order_ref)

        if not event.order_ref:
            log.warning("webhook_missing_order_ref")
            return WebhookResult(event_type=event.event_type, outcome="missing_order_ref")

        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(event.order_ref)
        if order is None:
            log.warning("webhook_order_not_found")
            return WebhookResult(order_ref=event.order_ref, event_type=event.event_type, outcome="order_not_found")
        if order.is_paid:
            log.info("webhook_order_already_paid")
            return WebhookResult(order_ref=event.order_ref, event_type=event.event_type, outcome="already_paid")

        if event.event_type == CHECKOUT_ORDER_COMPLETED:
            outcome = await self._guard.confirm_paid(
                event.order_ref,
                source="webhook",
                transaction_id=event.transaction_id,
                response=event.payload,
                amount=event.amount,
            )
        elif event.event_type == CHECKOUT_ORDER_FAILED:
            outcome = await self._guard.cancel(
                event.order_ref,
                source="webhook",
                reason="Payment failed (gateway callback)",
                response=event.payload,
            )
        else:
            log.info("webhook_event_ignored")
            return WebhookResult(order_ref=event.order_ref, event_type=event.event_type, outcome="ignored")

        log.info("webhook_processed", applied=outcome.applied, reason=outcome.reason)
        return WebhookResult(order_ref=event.order_ref, event_type=event.event_type, outcome=outcome.reason)
