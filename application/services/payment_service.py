"""
Application service orchestrating payment use-cases.

This class depends only on the application GatewayClient port and DTOs.
Gateway implementations are provided by infrastructure and must be injected
from the composition root (API/tasks), keeping dependencies one-way.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from application.dtos.orders import InitiationResult, OrderView, ReconcileOutcome
from application.dtos.payments import InitiatePayment
from application.ports.payment_gateway import GatewayClient, GatewayError
from application.services.reconciliation import ReconciliationGuard
from application.services.redirect_service import RedirectTokenService
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import (
    AmountMismatchException,
    InventoryReleaseError,
    OrderAlreadyPaidException,
    OrderNotFoundException,
    OrderNotPayableException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus, StatusHistoryEntry
from domain.order.state_machine import ReconciliationState, can_transition, is_terminal, state_of
from domain.payment.entity import PaymentRecord, PaymentRecordStatus, new_attempt_id
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)


def _ensure_payable(order: Order) -> None:
    if order.is_paid:
        raise OrderAlreadyPaidException(order.order_ref)
    if order.is_cancelled:
        raise OrderNotPayableException(order.order_ref, order.order_status.value)


class PaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: GatewayClient,
        guard: ReconciliationGuard,
        tokens: Optional[RedirectTokenService] = None,
        *,
        redirect_base_url: Optional[str] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._guard = guard
        self._tokens = tokens or RedirectTokenService()
        self._redirect_base_url = redirect_base_url or payment_settings.phonepe.redirect_base_url

    async def initiate_payment(self, order_ref: str, amount_minor: int) -> InitiationResult:
        """Start (or restart) a checkout for ``order_ref``.

        The amount is validated against the stored order total before any
        gateway call or state change.
        """
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
            if order is None:
                raise OrderNotFoundException(order_ref)
            _ensure_payable(order)
            expected = order.amount_minor()
            if amount_minor != expected:
                logger.warning(
                    "payment_initiate_amount_mismatch",
                    order_ref=order_ref,
                    expected=expected,
                    received=amount_minor,
                )
                raise AmountMismatchException(order_ref, expected, amount_minor)

            if can_transition(state_of(order), ReconciliationState.PENDING):
                if await uow.order_repository.reopen(order_ref):
                    await uow.order_repository.append_history(
                        order.id,
                        StatusHistoryEntry(status=OrderStatus.PENDING, note="Payment re-initiated", actor="customer"),
                    )
                    logger.info("payment_reopened", order_ref=order_ref)
                else:
                    current = await uow.order_repository.get_by_ref(order_ref)
                    _ensure_payable(current)

            attempt = await uow.payment_repository.get_latest_for_order(order.id)
            if attempt is None or attempt.status != PaymentRecordStatus.PENDING:
                attempt = await uow.payment_repository.create(
                    PaymentRecord(
                        id=None,
                        attempt_id=new_attempt_id(order_ref),
                        order_id=order.id,
                        user_id=order.user_id,
                        amount=expected,
                        method=order.payment_method,
                    )
                )

        logger.info(
            "payment_initiate_request",
            order_ref=order_ref,
            attempt_id=attempt.attempt_id,
            provider=self.gateway.provider,
            amount=expected,
        )
        try:
            redirect = await self.gateway.initiate(
                InitiatePayment(
                    order_ref=order_ref,
                    amount=expected,
                    redirect_url=self._tokens.redirect_url(self._redirect_base_url, order_ref),
                )
            )
        except GatewayError as exc:
            await self._guard.mark_initiation_failed(order_ref, source="initiate", reason=exc.message)
            raise

        async with self._uow_factory() as uow:
            await uow.payment_repository.attach_gateway_order(
                attempt.attempt_id, redirect.gateway_order_id, redirect.raw
            )
        logger.info(
            "payment_initiate_response",
            order_ref=order_ref,
            attempt_id=attempt.attempt_id,
            gateway_order_id=redirect.gateway_order_id,
        )
        return InitiationResult(
            order_ref=order_ref,
            attempt_id=attempt.attempt_id,
            redirect_url=redirect.redirect_url,
            gateway_order_id=redirect.gateway_order_id,
            expire_at=redirect.expire_at,
        )

    async def get_order_status(self, order_ref: str) -> OrderView:
        """Stored state only; never calls the gateway."""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
        if order is None:
            raise OrderNotFoundException(order_ref)
        return OrderView.from_entity(order)

    async def reconcile(self, order_ref: str, *, source: str = "admin") -> ReconcileOutcome:
        """Poll the gateway and apply its answer through the guard."""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
        if order is None:
            raise OrderNotFoundException(order_ref)
        state = state_of(order)
        if is_terminal(state):
            return ReconcileOutcome(order_ref=order_ref, applied=False, state=state, reason="terminal")

        status = await self.gateway.get_status(order_ref)
        outcome = await self._guard.apply_gateway_status(status, source=source)
        logger.info(
            "payment_reconciled",
            order_ref=order_ref,
            source=source,
            gateway_state=status.state,
            applied=outcome.applied,
            reason=outcome.reason,
        )
        return outcome

    async def cancel_order(self, order_ref: str, *, reason: str, source: str = "admin") -> ReconcileOutcome:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
        if order is None:
            raise OrderNotFoundException(order_ref)
        if order.is_paid:
            raise OrderAlreadyPaidException(order_ref)
        return await self._guard.cancel(order_ref, source=source, reason=reason)

    async def sweep_stale(
        self,
        *,
        now: Optional[datetime] = None,
        older_than: Optional[timedelta] = None,
        limit: Optional[int] = None,
    ) -> List[ReconcileOutcome]:
        """Re-check unsettled orders older than the stale threshold.

        Orders the gateway reports as failed are cancelled through the guard.
        An order the status endpoint does not know (checkout never created or
        purged after expiry) is cancelled as abandoned. Any other gateway
        error, bad credentials included, skips the order until the next sweep,
        as do release failures.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - (older_than or timedelta(minutes=payment_settings.stale_after_minutes))
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_unsettled_before(
                cutoff, limit or payment_settings.sweep_batch_size
            )

        outcomes: List[ReconcileOutcome] = []
        for order in orders:
            log = logger.bind(order_ref=order.order_ref, source="sweeper")
            try:
                try:
                    status = await self.gateway.get_status(order.order_ref)
                except GatewayError as exc:
                    if exc.code != PaymentCode.GATEWAY_ORDER_NOT_FOUND:
                        log.warning("sweep_status_poll_failed", error_type=exc.error_type, error=exc.message)
                        outcomes.append(
                            ReconcileOutcome(
                                order_ref=order.order_ref,
                                applied=False,
                                state=state_of(order),
                                reason="gateway_unavailable",
                            )
                        )
                        continue
                    log.info("sweep_gateway_order_unknown", error=exc.message)
                    outcome = await self._guard.cancel(
                        order.order_ref, source="sweeper", reason="Payment expired"
                    )
                else:
                    outcome = await self._guard.apply_gateway_status(status, source="sweeper")
            except InventoryReleaseError as exc:
                log.error("sweep_cancel_failed", error=exc.message)
                outcomes.append(
                    ReconcileOutcome(
                        order_ref=order.order_ref,
                        applied=False,
                        state=state_of(order),
                        reason="release_failed",
                    )
                )
                continue
            outcomes.append(outcome)

        logger.info(
            "sweep_completed",
            scanned=len(orders),
            applied=sum(1 for o in outcomes if o.applied),
            cutoff=cutoff.isoformat(),
        )
        return outcomes

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
