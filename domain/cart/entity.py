"""
购物车领域实体（结账子系统拥有，这里仅关注生命周期）
"""
from enum import Enum


class CartStatus(str, Enum):
    """
    购物车状态

    不变式：status=ordered 当且仅当关联订单已支付；
    其他结果都要回到 active 并清空订单关联。
    """

    ACTIVE = "active"
    ORDERED = "ordered"
