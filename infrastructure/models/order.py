"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, Boolean,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    payment_status/order_status 只允许通过仓储的条件更新修改
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_ref = Column(String(32), unique=True, index=True, nullable=False, comment="对外订单号")
    user_id = Column(Integer, nullable=True, index=True, comment="用户ID")
    cart_id = Column(String(64), nullable=True, index=True, comment="购物车ID")
    idempotency_key = Column(String(128), unique=True, nullable=True, comment="下单幂等键")

    # 金额信息
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False, comment="商品小计")
    discount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="优惠")
    shipping_cost = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="运费")
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付金额")
    currency = Column(String(3), nullable=False, default="INR", comment="货币代码 ISO-4217")

    # 状态
    payment_status = Column(
        String(20), nullable=False, default="pending", index=True,
        comment="支付状态: pending/paid/failed/refunded",
    )
    order_status = Column(
        String(20), nullable=False, default="pending", index=True,
        comment="订单状态: pending/confirmed/processing/shipped/delivered/cancelled",
    )
    payment_method = Column(String(30), nullable=False, default="phonepe", comment="支付方式")
    gateway_transaction_id = Column(String(100), nullable=True, index=True, comment="网关交易号")

    placed_at = Column(DateTime(timezone=True), nullable=True, comment="下单时间")
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

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.id",
    )
    history = relationship(
        "OrderStatusHistoryModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderStatusHistoryModel.id",
    )

    __table_args__ = (
        Index("ix_orders_status_created", "payment_status", "order_status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_ref='{self.order_ref}', "
            f"payment_status='{self.payment_status}', order_status='{self.order_status}')>"
        )


class OrderItemModel(Base):
    """订单行（价格快照）"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(Integer, nullable=False, index=True, comment="商品ID")
    variant_id = Column(String(64), nullable=True, comment="变体ID")
    sku = Column(String(100), nullable=True, comment="SKU")
    name = Column(String(255), nullable=False, comment="商品名称快照")
    quantity = Column(Integer, nullable=False, comment="数量")
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="成交单价")
    regular_price = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="原价")
    is_gift = Column(Boolean, nullable=False, default=False, comment="是否赠品")

    order = relationship("OrderModel", back_populates="items")


class OrderStatusHistoryModel(Base):
    """订单状态历史（只追加）"""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(String(20), nullable=False, comment="订单状态")
    note = Column(Text, nullable=True, comment="备注")
    actor = Column(String(50), nullable=True, comment="触发方: webhook/redirect/admin/sweeper/checkout")
    timestamp = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    order = relationship("OrderModel", back_populates="history")
