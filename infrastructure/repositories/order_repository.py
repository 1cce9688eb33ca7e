"""
订单仓储实现 - 使用SQLAlchemy实现数据访问

状态迁移全部是单条条件 UPDATE，依据 rowcount 判定是否命中；
并发的观察者（webhook / redirect / admin / sweeper）中只有一个会命中。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.order.entity import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    StatusHistoryEntry,
)
from domain.common.exceptions import DuplicateOrderException
from domain.order.repository import OrderRepository
from infrastructure.models.order import (
    OrderItemModel,
    OrderModel,
    OrderStatusHistoryModel,
)


logger = get_logger(__name__)

# paid 与 refunded 均视为已结算，任何路径都不得改写
_SETTLED_PAYMENT = (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_ref=model.order_ref,
            user_id=model.user_id,
            items=[
                OrderItem(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    unit_price=Decimal(str(item.unit_price)),
                    name=item.name,
                    variant_id=item.variant_id,
                    sku=item.sku,
                    regular_price=Decimal(str(item.regular_price)),
                    is_gift=bool(item.is_gift),
                )
                for item in model.items
            ],
            subtotal=Decimal(str(model.subtotal)),
            total_amount=Decimal(str(model.total_amount)),
            discount=Decimal(str(model.discount)),
            shipping_cost=Decimal(str(model.shipping_cost)),
            currency=model.currency,
            payment_status=PaymentStatus(model.payment_status),
            order_status=OrderStatus(model.order_status),
            payment_method=model.payment_method,
            gateway_transaction_id=model.gateway_transaction_id,
            cart_id=model.cart_id,
            idempotency_key=model.idempotency_key,
            status_history=[
                StatusHistoryEntry(
                    status=OrderStatus(h.status),
                    timestamp=h.timestamp,
                    note=h.note,
                    actor=h.actor,
                )
                for h in model.history
            ],
            placed_at=model.placed_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            id=entity.id,
            order_ref=entity.order_ref,
            user_id=entity.user_id,
            cart_id=entity.cart_id,
            idempotency_key=entity.idempotency_key,
            subtotal=entity.subtotal,
            discount=entity.discount,
            shipping_cost=entity.shipping_cost,
            total_amount=entity.total_amount,
            currency=entity.currency,
            payment_status=entity.payment_status.value,
            order_status=entity.order_status.value,
            payment_method=entity.payment_method,
            gateway_transaction_id=entity.gateway_transaction_id,
            placed_at=entity.placed_at,
            created_at=entity.created_at or datetime.now(timezone.utc),
            updated_at=entity.updated_at or datetime.now(timezone.utc),
            items=[
                OrderItemModel(
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    sku=item.sku,
                    name=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    regular_price=item.regular_price,
                    is_gift=item.is_gift,
                )
                for item in entity.items
            ],
            history=[
                OrderStatusHistoryModel(
                    status=h.status.value,
                    note=h.note,
                    actor=h.actor,
                    timestamp=h.timestamp,
                )
                for h in entity.status_history
            ],
        )

    async def _get_one(self, *criteria) -> Optional[Order]:
        # populate_existing: 条件 UPDATE 不经过 ORM，身份映射中的对象可能已过期
        result = await self.session.execute(
            select(OrderModel)
            .where(*criteria)
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def create(self, order: Order) -> Order:
        """创建订单"""
        try:
            db_order = self._to_model(order)
            self.session.add(db_order)
            await self.session.flush()
        except IntegrityError as e:
            logger.warning(
                "order_create_conflict",
                order_ref=order.order_ref,
                idempotency_key=order.idempotency_key,
            )
            raise DuplicateOrderException(order.order_ref, order.idempotency_key) from e
        logger.info(
            "order_created",
            order_id=db_order.id,
            order_ref=db_order.order_ref,
            total_amount=str(db_order.total_amount),
        )
        return self._to_entity(db_order)

    async def get_by_ref(self, order_ref: str) -> Optional[Order]:
        """根据订单号获取订单"""
        return await self._get_one(OrderModel.order_ref == order_ref)

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Order]:
        """根据幂等键获取订单"""
        return await self._get_one(OrderModel.idempotency_key == idempotency_key)

    async def list_unsettled_before(self, before: datetime, limit: int = 100) -> List[Order]:
        """获取长时间未结算的订单"""
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.created_at < before,
                OrderModel.payment_status.in_(
                    [PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]
                ),
                OrderModel.order_status == OrderStatus.PENDING.value,
            )
            .order_by(OrderModel.created_at.asc(), OrderModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def _conditional_update(self, order_ref: str, condition, values: dict) -> bool:
        values["updated_at"] = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(OrderModel)
            .where(and_(OrderModel.order_ref == order_ref, condition))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_paid(
        self,
        order_ref: str,
        *,
        transaction_id: Optional[str],
        payment_method: str,
    ) -> bool:
        """PENDING|FAILED -> PAID"""
        won = await self._conditional_update(
            order_ref,
            and_(
                OrderModel.payment_status.notin_(_SETTLED_PAYMENT),
                OrderModel.order_status != OrderStatus.CANCELLED.value,
            ),
            {
                "payment_status": PaymentStatus.PAID.value,
                "order_status": OrderStatus.CONFIRMED.value,
                "gateway_transaction_id": transaction_id,
                "payment_method": payment_method,
            },
        )
        logger.debug("order_mark_paid", order_ref=order_ref, won=won)
        return won

    async def mark_cancelled(self, order_ref: str) -> bool:
        """PENDING|FAILED -> CANCELLED"""
        won = await self._conditional_update(
            order_ref,
            and_(
                OrderModel.payment_status.notin_(_SETTLED_PAYMENT),
                OrderModel.order_status != OrderStatus.CANCELLED.value,
            ),
            {
                "payment_status": PaymentStatus.FAILED.value,
                "order_status": OrderStatus.CANCELLED.value,
            },
        )
        logger.debug("order_mark_cancelled", order_ref=order_ref, won=won)
        return won

    async def mark_payment_failed(self, order_ref: str) -> bool:
        """PENDING -> FAILED"""
        return await self._conditional_update(
            order_ref,
            and_(
                OrderModel.payment_status == PaymentStatus.PENDING.value,
                OrderModel.order_status == OrderStatus.PENDING.value,
            ),
            {"payment_status": PaymentStatus.FAILED.value},
        )

    async def reopen(self, order_ref: str) -> bool:
        """FAILED -> PENDING"""
        return await self._conditional_update(
            order_ref,
            and_(
                OrderModel.payment_status == PaymentStatus.FAILED.value,
                OrderModel.order_status == OrderStatus.PENDING.value,
            ),
            {"payment_status": PaymentStatus.PENDING.value},
        )

    async def append_history(self, order_id: int, entry: StatusHistoryEntry) -> None:
        """追加状态历史"""
        self.session.add(
            OrderStatusHistoryModel(
                order_id=order_id,
                status=entry.status.value,
                note=entry.note,
                actor=entry.actor,
                timestamp=entry.timestamp,
            )
        )
        await self.session.flush()
