"""
支付记录数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON,
    Index, ForeignKey
)
from datetime import datetime, timezone

from .base import Base


class PaymentRecordModel(Base):
    """
    支付记录数据库模型（每次支付尝试一行）

    所有业务规则都在 domain.payment.entity.PaymentRecord 中
    """
    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True, index=True)

    attempt_id = Column(String(64), unique=True, index=True, nullable=False, comment="内部交易号")
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="订单ID",
    )
    user_id = Column(Integer, nullable=True, index=True, comment="用户ID")

    # 最小货币单位
    amount = Column(Integer, nullable=False, comment="支付金额（最小货币单位）")
    method = Column(String(30), nullable=False, comment="支付方式")

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="状态: pending/success/failed"
    )

    gateway_transaction_id = Column(String(100), nullable=True, index=True, comment="网关交易号")
    gateway_order_id = Column(String(100), nullable=True, comment="网关订单号")
    gateway_response = Column(JSON, nullable=True, comment="网关原始响应快照")
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_payment_records_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentRecordModel(id={self.id}, attempt_id='{self.attempt_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
