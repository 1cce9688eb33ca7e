"""
购物车仓储实现
"""
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.cart.entity import CartStatus
from domain.cart.repository import CartRepository
from infrastructure.models.cart import CartModel


class SQLAlchemyCartRepository(CartRepository):
    """购物车仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def link_order(self, cart_id: str, order_id: int) -> bool:
        result = await self.session.execute(
            update(CartModel)
            .where(CartModel.cart_id == cart_id)
            .values(
                order_id=order_id,
                status=CartStatus.ACTIVE.value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_ordered(self, order_id: int) -> bool:
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(CartModel)
            .where(
                CartModel.order_id == order_id,
                CartModel.status != CartStatus.ORDERED.value,
            )
            .values(status=CartStatus.ORDERED.value, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def mark_active(self, order_id: int) -> bool:
        result = await self.session.execute(
            update(CartModel)
            .where(CartModel.order_id == order_id)
            .values(
                status=CartStatus.ACTIVE.value,
                order_id=None,
                completed_at=None,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
