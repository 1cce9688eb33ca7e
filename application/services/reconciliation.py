"""
Reconciliation guard.

Single entry point through which every observer of a gateway outcome
(webhook, redirect poll, admin re-check, sweeper) applies it to an order.
Each transition is a conditional UPDATE on the order row; only the observer
whose UPDATE matches performs the side effects, inside the same transaction:

- payment record settlement and gateway response snapshot
- status history entry
- stock release (failure only)
- cart projection

Everyone else gets a no-op outcome. No lock is taken.
"""
from __future__ import annotations

from typing import Any, Callable, List, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.dtos.orders import ReconcileOutcome
from application.dtos.payments import GatewayOrderStatus
from application.ports.event_publisher import EventPublisher
from application.services.cart_sync import CartLifecycleSync
from application.services.inventory_service import InventoryAdjuster
from core.logging_config import get_logger
from core.settings import InventoryRetry, payment_settings
from domain.common.exceptions import InventoryReleaseError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus, StatusHistoryEntry
from domain.order.events import (
    LatePaymentReceived,
    OrderCancelled,
    OrderEvent,
    OrderPaid,
    PaymentInitiationFailed,
)
from domain.order.state_machine import ReconciliationState, can_transition, state_of
from domain.payment.entity import PaymentRecordStatus


logger = get_logger(__name__)


class ReconciliationGuard:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        publisher: EventPublisher,
        *,
        inventory_retry: Optional[InventoryRetry] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._publisher = publisher
        self._inventory_retry = inventory_retry or payment_settings.inventory_retry

    async def _publish(self, events: List[OrderEvent]) -> None:
        for event in events:
            await self._publisher.publish(event)

    @staticmethod
    def _noop(order_ref: str, order: Optional[Order], reason: str) -> ReconcileOutcome:
        return ReconcileOutcome(
            order_ref=order_ref,
            applied=False,
            state=state_of(order) if order else None,
            reason=reason,
        )

    # ------------------------------------------------------------- success
    async def confirm_paid(
        self,
        order_ref: str,
        *,
        source: str,
        transaction_id: Optional[str] = None,
        response: Optional[dict[str, Any]] = None,
        amount: Optional[int] = None,
    ) -> ReconcileOutcome:
        """PENDING|FAILED -> PAID.

        ``amount`` (minor units), when reported by the gateway, must equal the
        order total; a mismatch is logged and never applied.
        """
        events: List[OrderEvent] = []
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
            if order is None:
                return self._noop(order_ref, None, "order_not_found")

            state = state_of(order)
            if state == ReconciliationState.CANCELLED:
                outcome = await self._record_late_payment(uow, order, source, transaction_id, response, events)
            elif not can_transition(state, ReconciliationState.PAID):
                return self._noop(order_ref, order, "already_paid")
            elif amount is not None and amount != order.amount_minor():
                logger.error(
                    "payment_amount_mismatch",
                    order_ref=order_ref,
                    source=source,
                    expected=order.amount_minor(),
                    received=amount,
                )
                return self._noop(order_ref, order, "amount_mismatch")
            else:
                outcome = await self._apply_paid(uow, order, source, transaction_id, response, events)
        await self._publish(events)
        return outcome

    async def _apply_paid(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        source: str,
        transaction_id: Optional[str],
        response: Optional[dict[str, Any]],
        events: List[OrderEvent],
    ) -> ReconcileOutcome:
        won = await uow.order_repository.mark_paid(
            order.order_ref,
            transaction_id=transaction_id,
            payment_method=order.payment_method,
        )
        if not won:
            current = await uow.order_repository.get_by_ref(order.order_ref)
            logger.info("reconcile_lost_race", order_ref=order.order_ref, source=source, target="paid")
            if current is not None and state_of(current) == ReconciliationState.CANCELLED:
                # cancelled between our read and the UPDATE; the capture still needs a refund
                return await self._record_late_payment(uow, current, source, transaction_id, response, events)
            return self._noop(order.order_ref, current, "lost_race")

        await uow.order_repository.append_history(
            order.id,
            StatusHistoryEntry(status=OrderStatus.CONFIRMED, note="Payment confirmed", actor=source),
        )
        settled = await uow.payment_repository.settle_latest(
            order.id,
            PaymentRecordStatus.SUCCESS,
            transaction_id=transaction_id,
            response=response,
        )
        if not settled:
            # latest attempt already failed at initiation; the earlier checkout page was paid
            logger.warning("payment_record_not_pending", order_ref=order.order_ref, source=source)
            await uow.payment_repository.settle_latest(
                order.id,
                PaymentRecordStatus.SUCCESS,
                transaction_id=transaction_id,
                response=response,
                from_status=PaymentRecordStatus.FAILED,
            )
        await CartLifecycleSync(uow).mark_ordered(order.order_ref)

        events.append(
            OrderPaid(
                order_ref=order.order_ref,
                source=source,
                total_amount=str(order.total_amount),
                items_count=order.total_quantity,
                transaction_id=transaction_id,
            )
        )
        logger.info(
            "order_paid",
            order_ref=order.order_ref,
            source=source,
            transaction_id=transaction_id,
        )
        return ReconcileOutcome(
            order_ref=order.order_ref,
            applied=True,
            state=ReconciliationState.PAID,
            reason="paid",
        )

    async def _record_late_payment(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        source: str,
        transaction_id: Optional[str],
        response: Optional[dict[str, Any]],
        events: List[OrderEvent],
    ) -> ReconcileOutcome:
        """Gateway captured funds for an order whose stock is already released.

        The order is left cancelled; only the payment record reflects the
        capture so the payment can be refunded manually.
        """
        recorded = await uow.payment_repository.settle_latest(
            order.id,
            PaymentRecordStatus.SUCCESS,
            transaction_id=transaction_id,
            response=response,
            from_status=PaymentRecordStatus.FAILED,
        ) or await uow.payment_repository.settle_latest(
            order.id,
            PaymentRecordStatus.SUCCESS,
            transaction_id=transaction_id,
            response=response,
        )
        if not recorded:
            return self._noop(order.order_ref, order, "already_cancelled")

        logger.error(
            "late_payment_for_cancelled_order",
            order_ref=order.order_ref,
            source=source,
            transaction_id=transaction_id,
            action="manual_refund_required",
        )
        events.append(
            LatePaymentReceived(order_ref=order.order_ref, source=source, transaction_id=transaction_id)
        )
        return self._noop(order.order_ref, order, "late_payment_recorded")

    # ------------------------------------------------------------- failure
    async def cancel(
        self,
        order_ref: str,
        *,
        source: str,
        reason: str,
        response: Optional[dict[str, Any]] = None,
    ) -> ReconcileOutcome:
        """PENDING|FAILED -> CANCELLED, releasing stock exactly once.

        The whole transition is retried with backoff when stock release
        fails; once attempts are exhausted ``InventoryReleaseError`` is
        raised and the order is left untouched.
        """
        cfg = self._inventory_retry
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, int(cfg.attempts))),
            wait=wait_exponential(multiplier=cfg.base_backoff, min=0, max=cfg.max_backoff),
            retry=retry_if_exception_type(InventoryReleaseError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "cancel_retry",
                        order_ref=order_ref,
                        source=source,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._cancel_once(order_ref, source=source, reason=reason, response=response)

    async def _cancel_once(
        self,
        order_ref: str,
        *,
        source: str,
        reason: str,
        response: Optional[dict[str, Any]],
    ) -> ReconcileOutcome:
        events: List[OrderEvent] = []
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
            if order is None:
                return self._noop(order_ref, None, "order_not_found")
            state = state_of(order)
            if not can_transition(state, ReconciliationState.CANCELLED):
                return self._noop(order_ref, order, f"already_{state.value}")

            won = await uow.order_repository.mark_cancelled(order_ref)
            if not won:
                current = await uow.order_repository.get_by_ref(order_ref)
                logger.info("reconcile_lost_race", order_ref=order_ref, source=source, target="cancelled")
                return self._noop(order_ref, current, "lost_race")

            await uow.order_repository.append_history(
                order.id,
                StatusHistoryEntry(status=OrderStatus.CANCELLED, note=reason, actor=source),
            )
            await uow.payment_repository.settle_latest(
                order.id,
                PaymentRecordStatus.FAILED,
                response=response,
                failure_reason=reason,
            )
            released = await InventoryAdjuster(uow.inventory_repository).release(order_ref, order.items)
            await CartLifecycleSync(uow).mark_active(order_ref)
            events.append(
                OrderCancelled(order_ref=order_ref, source=source, reason=reason, released_units=released)
            )
        await self._publish(events)
        logger.info("order_cancelled", order_ref=order_ref, source=source, released_units=released)
        return ReconcileOutcome(
            order_ref=order_ref,
            applied=True,
            state=ReconciliationState.CANCELLED,
            reason="cancelled",
            released_units=released,
        )

    async def mark_initiation_failed(self, order_ref: str, *, source: str, reason: str) -> ReconcileOutcome:
        """PENDING -> FAILED. Stock stays reserved so the customer can retry."""
        events: List[OrderEvent] = []
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
            if order is None:
                return self._noop(order_ref, None, "order_not_found")
            if not can_transition(state_of(order), ReconciliationState.FAILED):
                return self._noop(order_ref, order, "not_pending")
            won = await uow.order_repository.mark_payment_failed(order_ref)
            if not won:
                current = await uow.order_repository.get_by_ref(order_ref)
                return self._noop(order_ref, current, "not_pending")
            await uow.order_repository.append_history(
                order.id,
                StatusHistoryEntry(
                    status=OrderStatus.PENDING,
                    note=f"Payment initiation failed: {reason}",
                    actor=source,
                ),
            )
            await uow.payment_repository.settle_latest(
                order.id,
                PaymentRecordStatus.FAILED,
                failure_reason=reason,
            )
            events.append(PaymentInitiationFailed(order_ref=order_ref, source=source, reason=reason))
        await self._publish(events)
        logger.warning("payment_initiation_failed", order_ref=order_ref, source=source, reason=reason)
        return ReconcileOutcome(
            order_ref=order_ref,
            applied=True,
            state=ReconciliationState.FAILED,
            reason="initiation_failed",
        )

    # ------------------------------------------------------------ dispatch
    async def apply_gateway_status(self, status: GatewayOrderStatus, *, source: str) -> ReconcileOutcome:
        """Apply a polled gateway state; pending answers never transition."""
        if status.state == "success":
            return await self.confirm_paid(
                status.order_ref,
                source=source,
                transaction_id=status.transaction_id,
                response=status.raw,
                amount=status.amount,
            )
        if status.state == "failed":
            return await self.cancel(
                status.order_ref,
                source=source,
                reason="Payment failed at gateway",
                response=status.raw,
            )
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(status.order_ref)
        return self._noop(status.order_ref, order, "gateway_pending")
