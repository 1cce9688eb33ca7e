"""Celery reconciliation tasks, run synchronously the way a worker does."""
import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from functools import partial

import httpx
import pytest

from application.dtos.orders import PlaceOrder, PlaceOrderItem
from application.services.checkout_service import CheckoutService
from application.services.payment_service import PaymentService
from application.services.reconciliation import ReconciliationGuard
from core.settings import InventoryRetry, payment_settings
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.events import LoggingEventPublisher
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from infrastructure.external.payments.phonepe_client import PhonePeClient
from infrastructure.models import ProductModel
from infrastructure.tasks.tasks import payments as payment_tasks
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}"


@pytest.fixture
def worker_scope(db_url, phonepe_stub, phonepe_settings, publisher, monkeypatch):
    """Point the tasks at the test database and the in-process gateway."""

    @asynccontextmanager
    async def _scope():
        engine = build_engine(db_url)
        uow_factory = partial(SQLAlchemyUnitOfWork, build_session_factory(engine))
        guard = ReconciliationGuard(
            uow_factory,
            publisher,
            inventory_retry=InventoryRetry(attempts=1, base_backoff=0, max_backoff=0),
        )
        gateway = PhonePeClient(phonepe_settings, transport=httpx.MockTransport(phonepe_stub))
        service = PaymentService(uow_factory, gateway, guard)
        try:
            yield service
        finally:
            await service.aclose()
            await engine.dispose()

    monkeypatch.setattr(payment_tasks, "payment_service_scope", _scope)
    return _scope


async def _seed(db_url, orders=1):
    engine = build_engine(db_url)
    try:
        await create_tables(bind=engine)
        session_factory = build_session_factory(engine)
        async with session_factory() as session:
            session.add(
                ProductModel(id=1, sku="TEE-BLK", name="Tee", product_type="simple",
                             price=Decimal("300.00"), regular_price=Decimal("300.00"), stock_available=10)
            )
            await session.commit()
        checkout = CheckoutService(partial(SQLAlchemyUnitOfWork, session_factory), LoggingEventPublisher())
        refs = []
        for _ in range(orders):
            view = await checkout.place_order(PlaceOrder(items=[PlaceOrderItem(product_id=1, quantity=1)]))
            refs.append(view.order_ref)
        return refs
    finally:
        await engine.dispose()


def test_reconcile_order_task_applies_gateway_answer(db_url, worker_scope, phonepe_stub):
    [ref] = asyncio.run(_seed(db_url))
    phonepe_stub.set_state(ref, "COMPLETED", amount=30000)

    result = payment_tasks.reconcile_order(ref)

    assert result["applied"] is True
    assert result["state"] == "paid"
    # already terminal: no second poll
    again = payment_tasks.reconcile_order(ref)
    assert again["reason"] == "terminal"
    assert phonepe_stub.status_calls == [ref]


def test_reconcile_order_task_unknown_order(db_url, worker_scope):
    asyncio.run(_seed(db_url, orders=0))

    result = payment_tasks.reconcile_order("ORD20260101NOPE00")

    assert result == {"order_ref": "ORD20260101NOPE00", "applied": False, "reason": "not_found"}


def test_reconcile_order_task_surfaces_transient_errors(db_url, worker_scope, phonepe_stub):
    [ref] = asyncio.run(_seed(db_url))
    phonepe_stub.status_error = 503

    # called outside a worker, retry re-raises the original error
    with pytest.raises(PaymentRecoverableError):
        payment_tasks.reconcile_order(ref)


def test_reconcile_stale_orders_task(db_url, worker_scope, phonepe_stub, monkeypatch):
    failed, waiting = asyncio.run(_seed(db_url, orders=2))
    phonepe_stub.set_state(failed, "FAILED", amount=30000)
    monkeypatch.setattr(payment_settings, "stale_after_minutes", 0)

    result = payment_tasks.reconcile_stale_orders()

    assert result == {"scanned": 2, "applied": [failed]}
    assert sorted(phonepe_stub.status_calls) == sorted([failed, waiting])


def test_beat_schedule_runs_sweeper():
    from infrastructure.tasks.config.beat import CELERY_BEAT_SCHEDULE

    entry = CELERY_BEAT_SCHEDULE["payments-reconcile-stale-orders"]
    assert entry["task"] == payment_tasks.reconcile_stale_orders.name
    assert entry["schedule"] == float(payment_settings.sweep_interval_seconds)
