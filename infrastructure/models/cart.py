"""
购物车数据库模型
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from datetime import datetime, timezone

from .base import Base


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(String(64), unique=True, index=True, nullable=False, comment="对外购物车ID")
    user_id = Column(Integer, nullable=True, index=True, comment="用户ID")
    status = Column(String(20), nullable=False, default="active", comment="状态: active/ordered")
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="关联订单",
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<CartModel(id={self.id}, cart_id='{self.cart_id}', status='{self.status}')>"
