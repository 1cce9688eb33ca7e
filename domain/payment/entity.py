"""
支付记录领域实体 - 每次支付尝试一条记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import secrets
import time

from domain.common.exceptions import DomainValidationException


class PaymentRecordStatus(str, Enum):
    """支付尝试状态：pending -> success | failed，仅迁移一次"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_attempt_id(order_ref: str) -> str:
    """生成内部交易号：T + 毫秒时间戳 + 4位随机串 + 订单号后12位"""
    return f"T{int(time.time() * 1000)}{secrets.token_hex(2).upper()}{order_ref[-12:]}"


@dataclass
class PaymentRecord:
    """
    支付记录 - 关联内部交易号与网关交易号

    业务规则：
    1. 金额（最小货币单位）必须大于0
    2. 状态只能从 pending 迁移一次
    3. 保留网关原始响应快照用于审计/重放
    """

    id: Optional[int]
    attempt_id: str
    order_id: int
    user_id: Optional[int]
    amount: int  # 最小货币单位
    method: str
    status: PaymentRecordStatus = PaymentRecordStatus.PENDING
    gateway_transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_response: dict = field(default_factory=dict)
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount < 0:
            raise DomainValidationException(
                f"Payment amount cannot be negative: {self.amount}",
                field="amount",
            )
        if self.gateway_response is None:
            self.gateway_response = {}
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def is_final_status(self) -> bool:
        """检查是否为终态"""
        return self.status in (PaymentRecordStatus.SUCCESS, PaymentRecordStatus.FAILED)
