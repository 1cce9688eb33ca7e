import asyncio

import pytest

from application.dtos.orders import PlaceOrderItem
from application.services.inventory_service import InventoryAdjuster
from domain.common.exceptions import InventoryReleaseError
from domain.order.entity import OrderStatus, PaymentStatus
from domain.order.state_machine import ReconciliationState
from domain.payment.entity import PaymentRecordStatus
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository


@pytest.mark.asyncio
async def test_confirm_paid_applies_once(place_order, guard, publisher, order_state, cart_row, stock):
    order = await place_order()

    first = await guard.confirm_paid(order.order_ref, source="webhook", transaction_id="TXN-1", amount=119900)
    second = await guard.confirm_paid(order.order_ref, source="redirect", transaction_id="TXN-1", amount=119900)

    assert first.applied and first.state == ReconciliationState.PAID
    assert not second.applied and second.reason == "already_paid"
    stored, records = await order_state(order.order_ref)
    assert stored.payment_status == PaymentStatus.PAID
    assert stored.order_status == OrderStatus.CONFIRMED
    assert stored.gateway_transaction_id == "TXN-1"
    assert [r.status for r in records] == [PaymentRecordStatus.SUCCESS]
    assert (await cart_row()).status == "ordered"
    assert await stock(1) == 7 and await stock(2) == 4
    assert publisher.names().count("OrderPaid") == 1


@pytest.mark.asyncio
async def test_concurrent_success_observers_have_one_winner(place_order, guard, publisher, order_state):
    order = await place_order()

    outcomes = await asyncio.gather(
        guard.confirm_paid(order.order_ref, source="webhook", transaction_id="TXN-1"),
        guard.confirm_paid(order.order_ref, source="redirect", transaction_id="TXN-1"),
        guard.confirm_paid(order.order_ref, source="admin", transaction_id="TXN-1"),
    )

    assert sum(o.applied for o in outcomes) == 1
    assert all(o.state == ReconciliationState.PAID for o in outcomes)
    stored, _ = await order_state(order.order_ref)
    assert stored.is_paid
    assert publisher.names().count("OrderPaid") == 1
    confirmed = [h for h in stored.status_history if h.status == OrderStatus.CONFIRMED]
    assert len(confirmed) == 1


@pytest.mark.asyncio
async def test_cancel_restores_stock_exactly_once(place_order, guard, stock, cart_row, order_state):
    order = await place_order()
    assert await stock(1) == 7 and await stock(2) == 4

    outcomes = await asyncio.gather(
        guard.cancel(order.order_ref, source="webhook", reason="Payment failed"),
        guard.cancel(order.order_ref, source="redirect", reason="Payment failed"),
    )
    replay = await guard.cancel(order.order_ref, source="webhook", reason="Payment failed")

    assert sum(o.applied for o in outcomes) == 1
    assert not replay.applied and replay.reason == "already_cancelled"
    winner = next(o for o in outcomes if o.applied)
    assert winner.released_units == 4
    assert await stock(1) == 10 and await stock(2) == 5
    cart = await cart_row()
    assert cart.status == "active" and cart.order_id is None
    stored, records = await order_state(order.order_ref)
    assert stored.order_status == OrderStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.FAILED
    assert records[-1].status == PaymentRecordStatus.FAILED
    assert records[-1].failure_reason == "Payment failed"


@pytest.mark.asyncio
async def test_paid_is_never_downgraded(place_order, guard, stock, order_state):
    order = await place_order()
    await guard.confirm_paid(order.order_ref, source="webhook")

    outcome = await guard.cancel(order.order_ref, source="redirect", reason="late failure")
    failed = await guard.mark_initiation_failed(order.order_ref, source="initiate", reason="boom")

    assert not outcome.applied and outcome.reason == "already_paid"
    assert not failed.applied
    stored, _ = await order_state(order.order_ref)
    assert stored.is_paid and not stored.is_cancelled
    assert await stock(1) == 7


@pytest.mark.asyncio
async def test_amount_mismatch_is_not_applied(place_order, guard, order_state):
    order = await place_order()

    outcome = await guard.confirm_paid(order.order_ref, source="webhook", amount=119800)

    assert not outcome.applied and outcome.reason == "amount_mismatch"
    stored, records = await order_state(order.order_ref)
    assert stored.payment_status == PaymentStatus.PENDING
    assert records[-1].status == PaymentRecordStatus.PENDING


@pytest.mark.asyncio
async def test_success_after_cancel_is_recorded_not_applied(place_order, guard, publisher, stock, order_state):
    order = await place_order()
    await guard.cancel(order.order_ref, source="sweeper", reason="Payment expired")

    outcome = await guard.confirm_paid(order.order_ref, source="webhook", transaction_id="TXN-9")

    assert not outcome.applied and outcome.reason == "late_payment_recorded"
    stored, records = await order_state(order.order_ref)
    assert stored.is_cancelled and not stored.is_paid
    assert records[-1].status == PaymentRecordStatus.SUCCESS
    assert records[-1].gateway_transaction_id == "TXN-9"
    assert "LatePaymentReceived" in publisher.names()
    assert await stock(1) == 10


@pytest.mark.asyncio
async def test_success_losing_to_concurrent_cancel_is_recorded(
    place_order, guard, publisher, stock, order_state, monkeypatch
):
    order = await place_order()
    original = SQLAlchemyOrderRepository.mark_paid
    interleaved = {"done": False}

    async def cancel_first(self, order_ref, **kwargs):
        # the sweeper commits its cancel after confirm_paid has read the order as pending
        if not interleaved["done"]:
            interleaved["done"] = True
            await guard.cancel(order_ref, source="sweeper", reason="Payment expired")
        return await original(self, order_ref, **kwargs)

    monkeypatch.setattr(SQLAlchemyOrderRepository, "mark_paid", cancel_first)

    outcome = await guard.confirm_paid(order.order_ref, source="webhook", transaction_id="TXN-LATE")

    assert interleaved["done"]
    assert not outcome.applied and outcome.reason == "late_payment_recorded"
    stored, records = await order_state(order.order_ref)
    assert stored.is_cancelled and not stored.is_paid
    assert records[-1].status == PaymentRecordStatus.SUCCESS
    assert records[-1].gateway_transaction_id == "TXN-LATE"
    assert publisher.names().count("LatePaymentReceived") == 1
    assert "OrderPaid" not in publisher.names()
    assert await stock(1) == 10


@pytest.mark.asyncio
async def test_cancel_retries_when_release_fails(place_order, guard, stock, monkeypatch):
    order = await place_order()
    original = InventoryAdjuster.release
    calls = {"n": 0}

    async def flaky(self, order_ref, items):
        calls["n"] += 1
        if calls["n"] == 1:
            raise InventoryReleaseError(order_ref, "database is locked")
        return await original(self, order_ref, items)

    monkeypatch.setattr(InventoryAdjuster, "release", flaky)

    outcome = await guard.cancel(order.order_ref, source="webhook", reason="Payment failed")

    assert outcome.applied
    assert calls["n"] == 2
    assert await stock(1) == 10 and await stock(2) == 5


@pytest.mark.asyncio
async def test_cancel_gives_up_and_leaves_order_untouched(place_order, guard, stock, order_state, monkeypatch):
    order = await place_order()

    async def broken(self, order_ref, items):
        raise InventoryReleaseError(order_ref, "disk full")

    monkeypatch.setattr(InventoryAdjuster, "release", broken)

    with pytest.raises(InventoryReleaseError):
        await guard.cancel(order.order_ref, source="webhook", reason="Payment failed")

    stored, records = await order_state(order.order_ref)
    assert stored.order_status == OrderStatus.PENDING
    assert records[-1].status == PaymentRecordStatus.PENDING
    assert await stock(1) == 7


@pytest.mark.asyncio
async def test_initiation_failure_keeps_stock_reserved(place_order, guard, publisher, stock, order_state):
    order = await place_order()

    outcome = await guard.mark_initiation_failed(order.order_ref, source="initiate", reason="gateway down")

    assert outcome.applied and outcome.state == ReconciliationState.FAILED
    stored, records = await order_state(order.order_ref)
    assert stored.payment_status == PaymentStatus.FAILED
    assert stored.order_status == OrderStatus.PENDING
    assert records[-1].status == PaymentRecordStatus.FAILED
    assert await stock(1) == 7
    assert "PaymentInitiationFailed" in publisher.names()

    # a FAILED order can still be cancelled, releasing the reservation
    cancelled = await guard.cancel(order.order_ref, source="admin", reason="abandoned")
    assert cancelled.applied
    assert await stock(1) == 10


@pytest.mark.asyncio
async def test_transitions_outside_the_graph_write_nothing(place_order, guard, order_state, write_log):
    failed = await place_order()
    await guard.mark_initiation_failed(failed.order_ref, source="initiate", reason="gateway down")
    cancelled = await place_order(items=[PlaceOrderItem(product_id=1, quantity=1)], cart_id=None)
    await guard.cancel(cancelled.order_ref, source="admin", reason="Customer request")
    write_log.clear()

    again = await guard.mark_initiation_failed(failed.order_ref, source="initiate", reason="boom")
    after_cancel = await guard.mark_initiation_failed(cancelled.order_ref, source="initiate", reason="boom")

    assert (again.applied, again.reason) == (False, "not_pending")
    assert (after_cancel.applied, after_cancel.reason) == (False, "not_pending")
    assert write_log == []

    # FAILED -> PAID: the first checkout page was paid after re-initiation failed
    paid = await guard.confirm_paid(failed.order_ref, source="webhook", transaction_id="TXN-2")
    assert paid.applied and paid.state == ReconciliationState.PAID
    stored, records = await order_state(failed.order_ref)
    assert stored.is_paid
    assert records[-1].status == PaymentRecordStatus.SUCCESS
