"""
支付记录仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import PaymentRecord, PaymentRecordStatus


class PaymentRecordRepository(ABC):
    """支付记录仓储抽象接口"""

    @abstractmethod
    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """创建支付尝试记录"""
        pass

    @abstractmethod
    async def get_latest_for_order(self, order_id: int) -> Optional[PaymentRecord]:
        """获取订单最近一次支付尝试"""
        pass

    @abstractmethod
    async def list_for_order(self, order_id: int) -> List[PaymentRecord]:
        """获取订单全部支付尝试（按创建顺序）"""
        pass

    @abstractmethod
    async def attach_gateway_order(self, attempt_id: str, gateway_order_id: Optional[str], response: dict) -> None:
        """记录网关下单结果（不改变状态）"""
        pass

    @abstractmethod
    async def settle_latest(
        self,
        order_id: int,
        status: PaymentRecordStatus,
        *,
        transaction_id: Optional[str] = None,
        response: Optional[dict] = None,
        failure_reason: Optional[str] = None,
        from_status: PaymentRecordStatus = PaymentRecordStatus.PENDING,
    ) -> bool:
        """条件更新：最近一次尝试处于 from_status 时迁移为 status，返回是否命中

        常规路径只允许 pending -> success|failed；
        已取消订单的迟到成功使用 from_status=failed 记录实际扣款。
        """
        pass
