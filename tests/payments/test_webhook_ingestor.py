import pytest

from application.services.webhook_service import WebhookIngestor
from domain.order.entity import OrderStatus, PaymentStatus
from domain.payment.entity import PaymentRecordStatus
from infrastructure.external.payments.exceptions import MalformedCallbackError, PaymentSignatureError


@pytest.fixture
def ingestor(uow_factory, gateway, guard):
    return WebhookIngestor(uow_factory, gateway, guard)


@pytest.mark.asyncio
async def test_completed_replay_is_idempotent(
    ingestor, place_order, make_callback, callback_auth, publisher, order_state, cart_row, stock
):
    order = await place_order()
    body = make_callback("checkout.order.completed", order.order_ref, state="COMPLETED", amount=119900)

    first = await ingestor.ingest(callback_auth, body)
    second = await ingestor.ingest(callback_auth, body)

    assert first.acknowledged and first.outcome == "paid"
    assert first.event_type == "CHECKOUT_ORDER_COMPLETED"
    assert second.acknowledged and second.outcome == "already_paid"
    stored, records = await order_state(order.order_ref)
    assert stored.payment_status == PaymentStatus.PAID
    assert records[-1].status == PaymentRecordStatus.SUCCESS
    assert records[-1].gateway_response["payload"]["merchantOrderId"] == order.order_ref
    assert (await cart_row()).status == "ordered"
    assert await stock(1) == 7 and await stock(2) == 4
    assert publisher.names().count("OrderPaid") == 1


@pytest.mark.asyncio
async def test_completed_for_paid_order_writes_nothing(
    ingestor, place_order, make_callback, callback_auth, write_log
):
    order = await place_order()
    body = make_callback("CHECKOUT_ORDER_COMPLETED", order.order_ref, state="COMPLETED", amount=119900)
    await ingestor.ingest(callback_auth, body)
    write_log.clear()

    result = await ingestor.ingest(callback_auth, body)

    assert result.acknowledged and result.outcome == "already_paid"
    assert write_log == []


@pytest.mark.asyncio
async def test_failed_two_item_order_restores_stock_and_cart(
    ingestor, place_order, make_callback, callback_auth, order_state, cart_row, stock
):
    order = await place_order()
    assert (await cart_row()).order_id is not None
    body = make_callback("CHECKOUT_ORDER_FAILED", order.order_ref, state="FAILED", amount=119900)

    result = await ingestor.ingest(callback_auth, body)
    replay = await ingestor.ingest(callback_auth, body)

    assert result.outcome == "cancelled"
    assert replay.acknowledged and replay.outcome == "already_cancelled"
    assert await stock(1) == 10  # +3
    assert await stock(2) == 5   # +1
    cart = await cart_row()
    assert cart.status == "active"
    assert cart.order_id is None
    stored, records = await order_state(order.order_ref)
    assert stored.order_status == OrderStatus.CANCELLED
    assert records[-1].status == PaymentRecordStatus.FAILED


@pytest.mark.asyncio
async def test_amount_mismatch_is_acknowledged_without_transition(
    ingestor, place_order, make_callback, callback_auth, order_state
):
    order = await place_order()
    body = make_callback("CHECKOUT_ORDER_COMPLETED", order.order_ref, state="COMPLETED", amount=119800)

    result = await ingestor.ingest(callback_auth, body)

    assert result.acknowledged and result.outcome == "amount_mismatch"
    stored, _ = await order_state(order.order_ref)
    assert stored.payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_bad_authorization_is_rejected_without_writes(ingestor, place_order, make_callback, write_log):
    order = await place_order()
    write_log.clear()
    body = make_callback("CHECKOUT_ORDER_COMPLETED", order.order_ref, state="COMPLETED", amount=119900)

    with pytest.raises(PaymentSignatureError):
        await ingestor.ingest("0" * 64, body)
    with pytest.raises(PaymentSignatureError):
        await ingestor.ingest(None, body)
    assert write_log == []


@pytest.mark.asyncio
async def test_malformed_body_is_rejected(ingestor, callback_auth):
    with pytest.raises(MalformedCallbackError):
        await ingestor.ingest(callback_auth, b"not-json")
    with pytest.raises(MalformedCallbackError):
        await ingestor.ingest(callback_auth, b'{"event": "CHECKOUT_ORDER_COMPLETED"}')


@pytest.mark.asyncio
async def test_unknown_order_and_missing_ref_are_acknowledged(ingestor, catalog, make_callback, callback_auth):
    unknown = make_callback("CHECKOUT_ORDER_COMPLETED", "ORD20260101ZZZZZZ", state="COMPLETED", amount=100)
    missing = b'{"event": "CHECKOUT_ORDER_COMPLETED", "payload": {"state": "COMPLETED"}}'

    assert (await ingestor.ingest(callback_auth, unknown)).outcome == "order_not_found"
    assert (await ingestor.ingest(callback_auth, missing)).outcome == "missing_order_ref"


@pytest.mark.asyncio
async def test_other_events_are_ignored(ingestor, place_order, make_callback, callback_auth, order_state):
    order = await place_order()
    body = make_callback("pg.refund.accepted", order.order_ref, state="PENDING", amount=119900)

    result = await ingestor.ingest(callback_auth, body)

    assert result.acknowledged and result.outcome == "ignored"
    stored, _ = await order_state(order.order_ref)
    assert stored.payment_status == PaymentStatus.PENDING
