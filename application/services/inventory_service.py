"""
Inventory adjuster: reserve stock at checkout, release it when an order
fails or is cancelled.

Each line item is resolved to a counter before adjusting:

- bundle products expand to their component SKUs (``component.qty x quantity``)
- items with a ``variant_id`` adjust the variant counter
- everything else (simple products, gift products) adjusts the product counter

There is no idempotency key here. Release runs inside the winning
reconciliation transaction, so it happens at most once per order.
"""
from __future__ import annotations

from typing import Iterable, List

from sqlalchemy.exc import SQLAlchemyError

from core.logging_config import get_logger
from domain.common.exceptions import (
    InsufficientStockException,
    InventoryReleaseError,
    ProductNotFoundException,
)
from domain.inventory.entity import StockUnit
from domain.inventory.repository import InventoryRepository
from domain.order.entity import OrderItem


logger = get_logger(__name__)


class InventoryAdjuster:
    def __init__(self, inventory_repository: InventoryRepository) -> None:
        self._repo = inventory_repository

    async def _expand(self, item: OrderItem, *, strict: bool) -> List[StockUnit]:
        """Resolve a line item to the counters it touches."""
        product = await self._repo.get_product(item.product_id)
        if product is None:
            if strict:
                raise ProductNotFoundException(item.product_id, item.variant_id)
            return []
        if product.is_bundle:
            return [
                StockUnit(product_id=None, sku=c.sku, quantity=c.qty * item.quantity)
                for c in product.bundle_components
            ]
        if item.variant_id:
            return [StockUnit(product_id=item.product_id, variant_id=item.variant_id, quantity=item.quantity)]
        return [StockUnit(product_id=item.product_id, quantity=item.quantity)]

    async def _increment(self, unit: StockUnit) -> bool:
        if unit.scope == "variant":
            return await self._repo.increment_variant(unit.product_id, unit.variant_id, unit.quantity)
        if unit.scope == "sku":
            return await self._repo.increment_sku(unit.sku, unit.quantity)
        return await self._repo.increment_product(unit.product_id, unit.quantity)

    async def _decrement(self, unit: StockUnit) -> bool:
        if unit.scope == "variant":
            return await self._repo.decrement_variant(unit.product_id, unit.variant_id, unit.quantity)
        if unit.scope == "sku":
            return await self._repo.decrement_sku(unit.sku, unit.quantity)
        return await self._repo.decrement_product(unit.product_id, unit.quantity)

    async def reserve(self, items: Iterable[OrderItem]) -> int:
        """Decrement stock for every item; any miss fails the whole checkout.

        Partial decrements are undone by the caller's transaction rollback.
        """
        reserved = 0
        for item in items:
            for unit in await self._expand(item, strict=True):
                if not await self._decrement(unit):
                    logger.info(
                        "stock_reserve_insufficient",
                        product_id=unit.product_id,
                        variant_id=unit.variant_id,
                        sku=unit.sku or item.sku,
                        requested=unit.quantity,
                    )
                    raise InsufficientStockException(unit.sku or item.sku or str(item.product_id), unit.quantity)
                reserved += unit.quantity
        return reserved

    async def release(self, order_ref: str, items: Iterable[OrderItem]) -> int:
        """Increment stock for every item of ``order_ref``; returns units restored.

        A product that no longer exists is skipped with a warning. Storage
        errors are raised as ``InventoryReleaseError`` so the surrounding
        transition rolls back and can be retried.
        """
        released = 0
        try:
            for item in items:
                units = await self._expand(item, strict=False)
                if not units:
                    logger.warning(
                        "stock_release_product_missing",
                        order_ref=order_ref,
                        product_id=item.product_id,
                    )
                    continue
                for unit in units:
                    if await self._increment(unit):
                        released += unit.quantity
                    else:
                        logger.warning(
                            "stock_release_target_missing",
                            order_ref=order_ref,
                            product_id=unit.product_id,
                            variant_id=unit.variant_id,
                            sku=unit.sku,
                            quantity=unit.quantity,
                        )
        except SQLAlchemyError as exc:
            logger.error("stock_release_failed", order_ref=order_ref, error=str(exc))
            raise InventoryReleaseError(order_ref, str(exc), quantity=released) from exc
        logger.info("stock_released", order_ref=order_ref, units=released)
        return released
