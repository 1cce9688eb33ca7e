"""
Cart lifecycle sync: project an order's payment outcome onto its cart.

Every operation is idempotent and safe to call redundantly from any
reconciliation path. They run on the caller's unit of work so the cart
changes commit together with the order transition.
"""
from __future__ import annotations

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.state_machine import ReconciliationState, state_of


logger = get_logger(__name__)


class CartLifecycleSync:
    def __init__(self, uow: AbstractUnitOfWork) -> None:
        self._uow = uow

    async def mark_ordered(self, order_ref: str) -> bool:
        order = await self._uow.order_repository.get_by_ref(order_ref)
        if order is None or order.id is None:
            return False
        changed = await self._uow.cart_repository.mark_ordered(order.id)
        logger.debug("cart_mark_ordered", order_ref=order_ref, changed=changed)
        return changed

    async def mark_active(self, order_ref: str) -> bool:
        order = await self._uow.order_repository.get_by_ref(order_ref)
        if order is None or order.id is None:
            return False
        changed = await self._uow.cart_repository.mark_active(order.id)
        logger.debug("cart_mark_active", order_ref=order_ref, changed=changed)
        return changed

    async def sync(self, order_ref: str) -> bool:
        """Bring the cart in line with the order's current state.

        Pending orders keep their cart active and linked; nothing to do.
        """
        order = await self._uow.order_repository.get_by_ref(order_ref)
        if order is None or order.id is None:
            return False
        state = state_of(order)
        if state == ReconciliationState.PAID:
            return await self._uow.cart_repository.mark_ordered(order.id)
        if state == ReconciliationState.CANCELLED:
            return await self._uow.cart_repository.mark_active(order.id)
        return False
