"""
Celery tasks for payment reconciliation: single-order re-check and the
periodic stale payment sweeper.

Each run owns its event loop (``asyncio.run``), so the engine and gateway
client are created per run and disposed before the loop closes.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncIterator

from celery import shared_task

from application.ports.payment_gateway import GatewayError
from application.services.payment_service import PaymentService
from application.services.reconciliation import ReconciliationGuard
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import InventoryReleaseError, OrderNotFoundException
from infrastructure.database import build_engine, build_session_factory
from infrastructure.events import LoggingEventPublisher
from infrastructure.external.payments import get_gateway_client
from infrastructure.tasks.utils.base_task import BaseTask
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)


@asynccontextmanager
async def payment_service_scope() -> AsyncIterator[PaymentService]:
    engine = build_engine(settings.database.url, echo=settings.database.echo)
    uow_factory = partial(SQLAlchemyUnitOfWork, build_session_factory(engine))
    guard = ReconciliationGuard(uow_factory, LoggingEventPublisher())
    service = PaymentService(uow_factory, get_gateway_client(), guard)
    try:
        yield service
    finally:
        await service.aclose()
        await engine.dispose()


async def _reconcile(order_ref: str) -> dict:
    async with payment_service_scope() as service:
        outcome = await service.reconcile(order_ref, source="task")
    return outcome.model_dump(mode="json")


async def _sweep() -> list[dict]:
    async with payment_service_scope() as service:
        outcomes = await service.sweep_stale()
    return [o.model_dump(mode="json") for o in outcomes]


@shared_task(
    name="payments.reconcile_order",
    bind=True,
    base=BaseTask,
    max_retries=5,
    default_retry_delay=30,
)
def reconcile_order(self, order_ref: str):
    try:
        result = asyncio.run(_reconcile(order_ref))
    except OrderNotFoundException:
        logger.warning("reconcile_task_order_not_found", order_ref=order_ref)
        return {"order_ref": order_ref, "applied": False, "reason": "not_found"}
    except GatewayError as exc:
        if exc.code in (PaymentCode.PROVIDER_ERROR, PaymentCode.GATEWAY_ORDER_NOT_FOUND):
            raise
        raise self.retry(exc=exc)
    except InventoryReleaseError as exc:
        raise self.retry(exc=exc)
    logger.info("reconcile_task_done", order_ref=order_ref, applied=result["applied"], reason=result["reason"])
    return result


@shared_task(name="payments.reconcile_stale_orders", bind=True, base=BaseTask)
def reconcile_stale_orders(self):
    outcomes = asyncio.run(_sweep())
    return {
        "scanned": len(outcomes),
        "applied": [o["order_ref"] for o in outcomes if o["applied"]],
    }
