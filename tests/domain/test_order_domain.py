from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.order.entity import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    calculate_order_total,
    generate_order_ref,
    to_minor_units,
)
from domain.order.state_machine import (
    ReconciliationState,
    can_transition,
    derive_state,
    is_terminal,
)
from domain.payment.entity import new_attempt_id


@pytest.mark.parametrize(
    "payment_status, order_status, expected",
    [
        (PaymentStatus.PENDING, OrderStatus.PENDING, ReconciliationState.PENDING),
        (PaymentStatus.FAILED, OrderStatus.PENDING, ReconciliationState.FAILED),
        (PaymentStatus.PAID, OrderStatus.CONFIRMED, ReconciliationState.PAID),
        (PaymentStatus.FAILED, OrderStatus.CANCELLED, ReconciliationState.CANCELLED),
        (PaymentStatus.REFUNDED, OrderStatus.DELIVERED, ReconciliationState.PAID),
    ],
)
def test_derive_state(payment_status, order_status, expected):
    assert derive_state(payment_status, order_status) == expected


def test_transitions():
    assert can_transition(ReconciliationState.PENDING, ReconciliationState.PAID)
    assert can_transition(ReconciliationState.FAILED, ReconciliationState.PENDING)
    assert can_transition(ReconciliationState.FAILED, ReconciliationState.CANCELLED)
    assert can_transition(ReconciliationState.FAILED, ReconciliationState.PAID)
    assert not can_transition(ReconciliationState.FAILED, ReconciliationState.FAILED)
    assert not can_transition(ReconciliationState.PAID, ReconciliationState.CANCELLED)
    assert not can_transition(ReconciliationState.CANCELLED, ReconciliationState.PAID)
    assert not can_transition(ReconciliationState.PENDING, ReconciliationState.PENDING)
    assert is_terminal(ReconciliationState.PAID) and is_terminal(ReconciliationState.CANCELLED)
    assert not is_terminal(ReconciliationState.FAILED)


def test_minor_units():
    assert to_minor_units(Decimal("1199.00"), "INR") == 119900
    assert to_minor_units(Decimal("0.5"), "INR") == 50
    assert to_minor_units(Decimal("500"), "JPY") == 500


def test_order_total_never_negative():
    assert calculate_order_total(Decimal("100"), Decimal("10"), Decimal("20")) == Decimal("90")
    assert calculate_order_total(Decimal("100"), Decimal("0"), Decimal("150")) == Decimal("0")


def test_order_ref_format():
    ref = generate_order_ref(datetime(2026, 10, 18, tzinfo=timezone.utc))
    assert ref.startswith("ORD20261018")
    assert len(ref) == 17 and ref[11:].isalnum() and ref[11:].upper() == ref[11:]


def test_attempt_ids_are_unique_per_call():
    ids = {new_attempt_id("ORD20261018ABC123") for _ in range(5)}
    assert len(ids) == 5
    assert all(i.startswith("T") and i.endswith("261018ABC123") for i in ids)


def test_order_validation():
    with pytest.raises(DomainValidationException):
        OrderItem(product_id=1, quantity=0, unit_price=Decimal("1"), name="x")
    with pytest.raises(DomainValidationException):
        OrderItem(product_id=1, quantity=1, unit_price=Decimal("-1"), name="x")
    with pytest.raises(DomainValidationException):
        Order(id=None, order_ref="ORD1", user_id=None, items=[], subtotal=Decimal("0"), total_amount=Decimal("0"))

    order = Order(
        id=None,
        order_ref="ORD1",
        user_id=None,
        items=[OrderItem(product_id=1, quantity=2, unit_price=Decimal("10.50"), name="x")],
        subtotal=Decimal("21.00"),
        total_amount=Decimal("21.00"),
        created_at=datetime(2026, 1, 1),
    )
    assert order.amount_minor() == 2100
    assert order.total_quantity == 2
    assert order.created_at.tzinfo is timezone.utc
