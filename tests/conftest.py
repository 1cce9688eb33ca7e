"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
# Module-level engine must never reach a real server during tests
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DEBUG", "false")

import json
import time
from decimal import Decimal
from functools import partial

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event, select

from application.services.checkout_service import CheckoutService
from application.services.reconciliation import ReconciliationGuard
from core.settings import InventoryRetry, PhonePeSettings
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.external.payments.phonepe_client import PhonePeClient, callback_authorization
from infrastructure.models import CartModel, ProductModel, ProductVariantModel
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


CALLBACK_USER = "cb-user"
CALLBACK_PASS = "cb-pass"
CALLBACK_AUTH = callback_authorization(CALLBACK_USER, CALLBACK_PASS)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    def names(self):
        return [e.name for e in self.events]


class PhonePeStub:
    """In-process PhonePe sandbox served through httpx.MockTransport."""

    def __init__(self):
        self.states = {}
        self.status_error = None
        self.pay_error = None
        self.token_error = None
        self.pay_calls = []
        self.status_calls = []
        self.token_calls = 0

    def set_state(self, order_ref, state, *, amount=None, transaction_id="TXN-1"):
        body = {"orderId": f"OMO{order_ref}", "state": state}
        if amount is not None:
            body["amount"] = amount
        if state in ("COMPLETED", "FAILED"):
            body["paymentDetails"] = [
                {"transactionId": transaction_id, "state": state, "amount": amount, "paymentMode": "UPI_QR"}
            ]
        self.states[order_ref] = body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/v1/oauth/token"):
            self.token_calls += 1
            if self.token_error is not None:
                return httpx.Response(self.token_error, json={"code": "UNAUTHORIZED"})
            return httpx.Response(
                200,
                json={"access_token": "tok", "token_type": "O-Bearer", "expires_at": int(time.time()) + 3600},
            )
        if path.endswith("/checkout/v2/pay"):
            body = json.loads(request.content)
            self.pay_calls.append(body)
            if self.pay_error is not None:
                return httpx.Response(self.pay_error, json={"code": "BAD_REQUEST"})
            ref = body["merchantOrderId"]
            return httpx.Response(
                200,
                json={
                    "orderId": f"OMO{ref}",
                    "state": "PENDING",
                    "expireAt": int(time.time() * 1000) + 1_200_000,
                    "redirectUrl": f"https://mercury.example/checkout?ref={ref}",
                },
            )
        if "/checkout/v2/order/" in path:
            ref = path.rstrip("/").split("/")[-2]
            self.status_calls.append(ref)
            if self.status_error is not None:
                return httpx.Response(self.status_error, json={"code": "ERROR"})
            return httpx.Response(200, json=self.states.get(ref, {"orderId": f"OMO{ref}", "state": "PENDING"}))
        return httpx.Response(404, json={"code": "NOT_FOUND"})


def callback_body(event, order_ref, *, state, amount, transaction_id="TXN-1"):
    return json.dumps(
        {
            "event": event,
            "payload": {
                "merchantOrderId": order_ref,
                "orderId": f"OMO{order_ref}",
                "state": state,
                "amount": amount,
                "paymentDetails": [{"transactionId": transaction_id, "state": state, "amount": amount}],
            },
        }
    ).encode()


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await create_tables(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def guard(uow_factory, publisher):
    return ReconciliationGuard(
        uow_factory,
        publisher,
        inventory_retry=InventoryRetry(attempts=3, base_backoff=0, max_backoff=0),
    )


@pytest.fixture
def phonepe_stub():
    return PhonePeStub()


@pytest.fixture
def phonepe_settings():
    return PhonePeSettings(
        client_id="cid",
        client_secret="csecret",
        callback_username=CALLBACK_USER,
        callback_password=CALLBACK_PASS,
    )


@pytest_asyncio.fixture
async def gateway(phonepe_stub, phonepe_settings):
    client = PhonePeClient(phonepe_settings, transport=httpx.MockTransport(phonepe_stub))
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def catalog(session_factory):
    """Two simple products, a configurable one with a variant, a bundle and a cart."""
    async with session_factory() as session:
        session.add_all(
            [
                ProductModel(id=1, sku="TEE-BLK", name="Tee", product_type="simple",
                             price=Decimal("300.00"), regular_price=Decimal("350.00"), stock_available=10),
                ProductModel(id=2, sku="CAP-RED", name="Cap", product_type="simple",
                             price=Decimal("299.00"), regular_price=Decimal("299.00"), stock_available=5),
                ProductModel(id=3, sku="HOODIE", name="Hoodie", product_type="configurable",
                             price=Decimal("900.00"), regular_price=Decimal("900.00"), stock_available=0),
                ProductModel(id=4, sku="KIT", name="Starter kit", product_type="bundle",
                             price=Decimal("500.00"), regular_price=Decimal("550.00"), stock_available=0,
                             bundle_components=[{"sku": "TEE-BLK", "qty": 1}, {"sku": "CAP-RED", "qty": 2}]),
            ]
        )
        await session.flush()
        session.add(
            ProductVariantModel(id="hoodie-m", product_id=3, sku="HOODIE-M", name="M",
                                price=Decimal("950.00"), regular_price=Decimal("999.00"), stock_available=4)
        )
        session.add(CartModel(cart_id="cart-1", user_id=7, status="active"))
        await session.commit()


@pytest.fixture
def place_order(uow_factory, publisher, catalog):
    """Place an order through checkout (total 1199.00 INR by default)."""
    from application.dtos.orders import PlaceOrder, PlaceOrderItem

    async def _place(items=None, **kwargs):
        lines = items or [
            PlaceOrderItem(product_id=1, quantity=3),
            PlaceOrderItem(product_id=2, quantity=1),
        ]
        kwargs.setdefault("user_id", 7)
        kwargs.setdefault("cart_id", "cart-1")
        return await CheckoutService(uow_factory, publisher).place_order(PlaceOrder(items=lines, **kwargs))

    return _place


@pytest.fixture
def stock(session_factory):
    async def _stock(product_id=None, variant_id=None):
        async with session_factory() as session:
            if variant_id is not None:
                row = await session.get(ProductVariantModel, variant_id)
            else:
                row = await session.get(ProductModel, product_id)
            return row.stock_available

    return _stock


@pytest.fixture
def cart_row(session_factory):
    async def _cart(cart_id="cart-1"):
        async with session_factory() as session:
            return (await session.execute(select(CartModel).where(CartModel.cart_id == cart_id))).scalar_one()

    return _cart


@pytest.fixture
def make_callback():
    return callback_body


@pytest.fixture
def callback_auth():
    return CALLBACK_AUTH


@pytest.fixture
def write_log(engine):
    """Collects every INSERT/UPDATE/DELETE sent to the database."""
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().split(" ", 1)[0].upper() in {"INSERT", "UPDATE", "DELETE"}:
            statements.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine.sync_engine, "before_cursor_execute", _record)


@pytest.fixture
def order_state(uow_factory):
    async def _state(order_ref):
        async with uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
            records = await uow.payment_repository.list_for_order(order.id)
        return order, records

    return _state
