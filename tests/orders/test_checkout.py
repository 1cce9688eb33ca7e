from decimal import Decimal

import pytest

from application.dtos.orders import PlaceOrder, PlaceOrderItem
from application.services.checkout_service import CheckoutService
from domain.common.exceptions import InsufficientStockException, ProductNotFoundException
from domain.order.entity import OrderStatus, PaymentStatus
from domain.order.state_machine import ReconciliationState
from domain.payment.entity import PaymentRecordStatus


@pytest.fixture
def checkout(uow_factory, publisher, catalog):
    return CheckoutService(uow_factory, publisher)


@pytest.mark.asyncio
async def test_place_order_reserves_stock_and_links_cart(place_order, publisher, stock, cart_row, order_state):
    view = await place_order()

    assert view.order_ref.startswith("ORD") and len(view.order_ref) == 17
    assert view.total_amount == Decimal("1199.00")
    assert view.amount_minor == 119900
    assert view.currency == "INR"
    assert view.reconciliation_state == ReconciliationState.PENDING
    assert [i.sku for i in view.items] == ["TEE-BLK", "CAP-RED"]
    assert await stock(1) == 7 and await stock(2) == 4

    stored, records = await order_state(view.order_ref)
    assert stored.payment_status == PaymentStatus.PENDING
    assert stored.order_status == OrderStatus.PENDING
    assert stored.status_history[0].note == "Order placed"
    assert len(records) == 1
    assert records[0].status == PaymentRecordStatus.PENDING
    assert records[0].amount == 119900
    assert records[0].attempt_id.startswith("T")

    cart = await cart_row()
    assert cart.order_id == stored.id and cart.status == "active"
    assert publisher.names() == ["OrderPlaced"]


@pytest.mark.asyncio
async def test_shipping_and_discount(place_order):
    view = await place_order(shipping_cost=Decimal("49.00"), discount=Decimal("100.00"))
    assert view.total_amount == Decimal("1148.00")
    assert view.amount_minor == 114800


@pytest.mark.asyncio
async def test_variant_line_uses_variant_price_and_stock(place_order, stock):
    view = await place_order(items=[PlaceOrderItem(product_id=3, variant_id="hoodie-m", quantity=2)])

    assert view.total_amount == Decimal("1900.00")
    assert view.items[0].name == "Hoodie - M"
    assert view.items[0].sku == "HOODIE-M"
    assert await stock(variant_id="hoodie-m") == 2
    assert await stock(3) == 0


@pytest.mark.asyncio
async def test_bundle_decrements_component_skus(place_order, guard, stock):
    view = await place_order(items=[PlaceOrderItem(product_id=4, quantity=2)])

    assert view.total_amount == Decimal("1000.00")
    assert await stock(1) == 8   # 1 x 2
    assert await stock(2) == 1   # 2 x 2

    outcome = await guard.cancel(view.order_ref, source="admin", reason="abandoned")
    assert outcome.released_units == 6
    assert await stock(1) == 10 and await stock(2) == 5


@pytest.mark.asyncio
async def test_gift_line_is_free_but_reserves_stock(place_order, stock):
    view = await place_order(
        items=[
            PlaceOrderItem(product_id=1, quantity=1),
            PlaceOrderItem(product_id=2, quantity=1, is_gift=True),
        ]
    )
    assert view.total_amount == Decimal("300.00")
    assert view.items[1].is_gift and view.items[1].unit_price == Decimal("0")
    assert await stock(2) == 4


@pytest.mark.asyncio
async def test_insufficient_stock_rolls_back_everything(place_order, stock, cart_row, publisher):
    with pytest.raises(InsufficientStockException):
        await place_order(
            items=[
                PlaceOrderItem(product_id=1, quantity=2),
                PlaceOrderItem(product_id=2, quantity=6),
            ]
        )

    assert await stock(1) == 10 and await stock(2) == 5
    assert (await cart_row()).order_id is None
    assert publisher.names() == []


@pytest.mark.asyncio
async def test_unknown_product_or_variant(place_order):
    with pytest.raises(ProductNotFoundException):
        await place_order(items=[PlaceOrderItem(product_id=99, quantity=1)])
    with pytest.raises(ProductNotFoundException) as exc_info:
        await place_order(items=[PlaceOrderItem(product_id=3, variant_id="hoodie-xxl", quantity=1)])
    assert exc_info.value.details == {"product_id": 3, "variant_id": "hoodie-xxl"}


@pytest.mark.asyncio
async def test_idempotency_key_replays_order(checkout, publisher, stock):
    cmd = PlaceOrder(
        items=[PlaceOrderItem(product_id=1, quantity=1)],
        user_id=7,
        cart_id="cart-1",
        idempotency_key="checkout-abc",
    )

    first = await checkout.place_order(cmd)
    second = await checkout.place_order(cmd)

    assert first.order_ref == second.order_ref
    assert await stock(1) == 9
    assert publisher.names() == ["OrderPlaced"]


@pytest.mark.asyncio
async def test_missing_cart_does_not_block_checkout(checkout, stock):
    view = await checkout.place_order(
        PlaceOrder(items=[PlaceOrderItem(product_id=1, quantity=1)], cart_id="no-such-cart")
    )
    assert view.reconciliation_state == ReconciliationState.PENDING
    assert await stock(1) == 9
