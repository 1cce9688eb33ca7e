"""
购物车仓储接口
"""
from abc import ABC, abstractmethod


class CartRepository(ABC):
    """购物车仓储抽象接口（所有写操作幂等）"""

    @abstractmethod
    async def link_order(self, cart_id: str, order_id: int) -> bool:
        """结账时关联订单（状态保持 active）"""
        pass

    @abstractmethod
    async def mark_ordered(self, order_id: int) -> bool:
        """置为 ordered；已是 ordered 时不写入，返回是否发生变更"""
        pass

    @abstractmethod
    async def mark_active(self, order_id: int) -> bool:
        """回到 active 并清空订单关联；无关联购物车时返回 False"""
        pass
