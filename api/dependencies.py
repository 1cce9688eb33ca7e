"""
API依赖项 - 组装应用服务

网关客户端在应用启动时创建一次并挂在 app.state 上；
测试通过 dependency_overrides 替换网关、事件发布器与 UoW 工厂。
"""
from typing import Callable

from fastapi import Depends, Request

from application.ports.event_publisher import EventPublisher
from application.ports.payment_gateway import GatewayClient
from application.services.checkout_service import CheckoutService
from application.services.payment_service import PaymentService
from application.services.reconciliation import ReconciliationGuard
from application.services.redirect_service import RedirectResolver
from application.services.webhook_service import WebhookIngestor
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.events import LoggingEventPublisher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


_publisher = LoggingEventPublisher()


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_event_publisher() -> EventPublisher:
    return _publisher


def get_gateway(request: Request) -> GatewayClient:
    gateway = getattr(request.app.state, "gateway_client", None)
    if gateway is None:
        raise BusinessException(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message="Payment gateway is not configured",
            error_type="GatewayUnavailable",
        )
    return gateway


def get_guard(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> ReconciliationGuard:
    return ReconciliationGuard(uow_factory, publisher)


def get_payment_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: GatewayClient = Depends(get_gateway),
    guard: ReconciliationGuard = Depends(get_guard),
) -> PaymentService:
    return PaymentService(uow_factory, gateway, guard)


def get_webhook_ingestor(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: GatewayClient = Depends(get_gateway),
    guard: ReconciliationGuard = Depends(get_guard),
) -> WebhookIngestor:
    return WebhookIngestor(uow_factory, gateway, guard)


def get_redirect_resolver(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: GatewayClient = Depends(get_gateway),
    guard: ReconciliationGuard = Depends(get_guard),
) -> RedirectResolver:
    return RedirectResolver(uow_factory, gateway, guard)


def get_checkout_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> CheckoutService:
    return CheckoutService(uow_factory, publisher)
