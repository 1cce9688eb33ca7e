"""
下单应用服务 - 定价、预占库存、创建订单与首个支付尝试

同一个幂等键重复提交时直接返回已存在的订单，不产生任何副作用。
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List

from application.dtos.orders import OrderView, PlaceOrder, PlaceOrderItem
from application.ports.event_publisher import EventPublisher
from application.services.inventory_service import InventoryAdjuster
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import DuplicateOrderException, ProductNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.repository import InventoryRepository
from domain.order.entity import (
    Order,
    OrderItem,
    OrderStatus,
    StatusHistoryEntry,
    calculate_order_total,
    generate_order_ref,
)
from domain.order.events import OrderPlaced
from domain.payment.entity import PaymentRecord, new_attempt_id


logger = get_logger(__name__)


class CheckoutService:
    """下单服务"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], publisher: EventPublisher):
        self._uow_factory = uow_factory
        self._publisher = publisher

    async def _price_item(self, repo: InventoryRepository, line: PlaceOrderItem) -> OrderItem:
        """按目录价格生成订单行快照"""
        product = await repo.get_product(line.product_id)
        if product is None:
            raise ProductNotFoundException(line.product_id)
        name, sku = product.name, product.sku
        price, regular = product.price, product.regular_price
        if line.variant_id:
            variant = await repo.get_variant(line.product_id, line.variant_id)
            if variant is None:
                raise ProductNotFoundException(line.product_id, line.variant_id)
            name = f"{product.name} - {variant.name}"
            sku = variant.sku or sku
            price, regular = variant.price, variant.regular_price
        if line.is_gift:
            price = Decimal("0")
        return OrderItem(
            product_id=line.product_id,
            variant_id=line.variant_id,
            sku=sku,
            name=name,
            quantity=line.quantity,
            unit_price=price,
            regular_price=regular,
            is_gift=line.is_gift,
        )

    async def _find_replay(self, idempotency_key: str):
        async with self._uow_factory(readonly=True) as uow:
            return await uow.order_repository.get_by_idempotency_key(idempotency_key)

    async def place_order(self, cmd: PlaceOrder) -> OrderView:
        if cmd.idempotency_key:
            existing = await self._find_replay(cmd.idempotency_key)
            if existing is not None:
                logger.info("order_replayed", order_ref=existing.order_ref, idempotency_key=cmd.idempotency_key)
                return OrderView.from_entity(existing)

        try:
            async with self._uow_factory() as uow:
                items: List[OrderItem] = [
                    await self._price_item(uow.inventory_repository, line) for line in cmd.items
                ]
                subtotal = sum((i.line_total for i in items), Decimal("0"))
                now = datetime.now(timezone.utc)
                order = Order(
                    id=None,
                    order_ref=generate_order_ref(now),
                    user_id=cmd.user_id,
                    items=items,
                    subtotal=subtotal,
                    total_amount=calculate_order_total(subtotal, cmd.shipping_cost, cmd.discount),
                    discount=cmd.discount,
                    shipping_cost=cmd.shipping_cost,
                    currency=payment_settings.currency,
                    cart_id=cmd.cart_id,
                    idempotency_key=cmd.idempotency_key,
                    status_history=[
                        StatusHistoryEntry(status=OrderStatus.PENDING, note="Order placed", actor="checkout")
                    ],
                    placed_at=now,
                )

                await InventoryAdjuster(uow.inventory_repository).reserve(items)
                order = await uow.order_repository.create(order)
                await uow.payment_repository.create(
                    PaymentRecord(
                        id=None,
                        attempt_id=new_attempt_id(order.order_ref),
                        order_id=order.id,
                        user_id=order.user_id,
                        amount=order.amount_minor(),
                        method=order.payment_method,
                    )
                )
                if cmd.cart_id and not await uow.cart_repository.link_order(cmd.cart_id, order.id):
                    logger.warning("checkout_cart_not_found", cart_id=cmd.cart_id, order_ref=order.order_ref)
        except DuplicateOrderException:
            if not cmd.idempotency_key:
                raise
            # 并发重放：另一请求已用同一幂等键创建订单
            existing = await self._find_replay(cmd.idempotency_key)
            if existing is None:
                raise
            return OrderView.from_entity(existing)

        await self._publisher.publish(
            OrderPlaced(
                order_ref=order.order_ref,
                source="checkout",
                total_amount=str(order.total_amount),
                items_count=order.total_quantity,
            )
        )
        logger.info(
            "order_placed",
            order_ref=order.order_ref,
            total_amount=str(order.total_amount),
            items=len(order.items),
        )
        return OrderView.from_entity(order)
