"""
Reconciliation state machine.

An order's payment outcome is derived from two persisted fields
(`payment_status`, `order_status`). Every path that observes a gateway
outcome (webhook, redirect, admin re-check, sweeper) moves the order through
the same small graph:

    PENDING | FAILED -> PAID           (terminal success)
    PENDING -> FAILED -> PENDING       (initiation failed, retry allowed)
    PENDING | FAILED -> CANCELLED      (terminal, stock released once)

FAILED -> PAID covers a checkout page that was paid after a later
re-initiation failed. The guard consults `can_transition` before each
conditional write; the conditional UPDATEs that enforce the same graph
against concurrent writers live in the order repository.
"""
from __future__ import annotations

from enum import Enum

from .entity import Order, OrderStatus, PaymentStatus


class ReconciliationState(str, Enum):
    PENDING = "pending"
    FAILED = "failed"
    PAID = "paid"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({ReconciliationState.PAID, ReconciliationState.CANCELLED})

ALLOWED_TRANSITIONS: dict[ReconciliationState, frozenset[ReconciliationState]] = {
    ReconciliationState.PENDING: frozenset({
        ReconciliationState.PAID,
        ReconciliationState.FAILED,
        ReconciliationState.CANCELLED,
    }),
    ReconciliationState.FAILED: frozenset({
        ReconciliationState.PENDING,
        ReconciliationState.PAID,
        ReconciliationState.CANCELLED,
    }),
    ReconciliationState.PAID: frozenset(),
    ReconciliationState.CANCELLED: frozenset(),
}


def derive_state(payment_status: PaymentStatus, order_status: OrderStatus) -> ReconciliationState:
    # paid wins over everything; refunds are handled outside reconciliation
    if payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
        return ReconciliationState.PAID
    if order_status == OrderStatus.CANCELLED:
        return ReconciliationState.CANCELLED
    if payment_status == PaymentStatus.FAILED:
        return ReconciliationState.FAILED
    return ReconciliationState.PENDING


def state_of(order: Order) -> ReconciliationState:
    return derive_state(order.payment_status, order.order_status)


def is_terminal(state: ReconciliationState) -> bool:
    return state in TERMINAL_STATES


def can_transition(current: ReconciliationState, target: ReconciliationState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]
