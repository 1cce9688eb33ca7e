"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.cart.repository import CartRepository
from domain.inventory.repository import InventoryRepository
from domain.order.repository import OrderRepository
from domain.payment.repository import PaymentRecordRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    对账守卫的条件更新与其副作用（支付记录、购物车、库存、状态历史）
    必须在同一个工作单元内提交或回滚。
    """

    order_repository: OrderRepository
    payment_repository: PaymentRecordRepository
    cart_repository: CartRepository
    inventory_repository: InventoryRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.order_repository = None  # type: ignore[assignment]
        self.payment_repository = None  # type: ignore[assignment]
        self.cart_repository = None  # type: ignore[assignment]
        self.inventory_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
