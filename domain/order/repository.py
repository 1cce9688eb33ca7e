"""
订单仓储接口 - 定义订单数据访问的抽象接口

状态迁移方法均为条件更新（compare-and-set），返回是否命中：
命中者负责后续副作用，未命中者直接放弃。
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Order, StatusHistoryEntry


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单（含订单行与首条状态历史）"""
        pass

    @abstractmethod
    async def get_by_ref(self, order_ref: str) -> Optional[Order]:
        """根据对外订单号获取订单"""
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Order]:
        """根据幂等键获取订单"""
        pass

    @abstractmethod
    async def list_unsettled_before(self, before: datetime, limit: int = 100) -> List[Order]:
        """获取在指定时间之前创建、仍未结算（pending/failed 且未取消）的订单"""
        pass

    @abstractmethod
    async def mark_paid(
        self,
        order_ref: str,
        *,
        transaction_id: Optional[str],
        payment_method: str,
    ) -> bool:
        """条件更新：payment_status != paid 且未取消时置为 paid/confirmed"""
        pass

    @abstractmethod
    async def mark_cancelled(self, order_ref: str) -> bool:
        """条件更新：未支付且未取消时置为 failed/cancelled"""
        pass

    @abstractmethod
    async def mark_payment_failed(self, order_ref: str) -> bool:
        """条件更新：pending/pending -> failed/pending（可重试）"""
        pass

    @abstractmethod
    async def reopen(self, order_ref: str) -> bool:
        """条件更新：failed/pending -> pending/pending"""
        pass

    @abstractmethod
    async def append_history(self, order_id: int, entry: StatusHistoryEntry) -> None:
        """追加状态历史"""
        pass
