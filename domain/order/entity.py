"""
订单领域实体 - 订单聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional
import secrets
import string

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """订单支付状态"""
    PENDING = "pending"
    PAID = "paid"          # 终态（成功）
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    """订单履约状态"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"  # 终态（库存已回补）


ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """金额转换为最小货币单位（INR -> paise）"""
    exponent = 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2
    return int((Decimal(amount) * (Decimal(10) ** exponent)).to_integral_value())


_REF_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_ref(now: Optional[datetime] = None) -> str:
    """生成对外订单号：ORD + YYYYMMDD + 6位大写字母数字"""
    day = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(6))
    return f"ORD{day}{suffix}"


def calculate_order_total(subtotal: Decimal, shipping_cost: Decimal, discount: Decimal) -> Decimal:
    total = subtotal + shipping_cost - discount
    return total if total > 0 else Decimal("0")


@dataclass
class OrderItem:
    """订单行（下单时的价格快照）"""

    product_id: int
    quantity: int
    unit_price: Decimal
    name: str
    variant_id: Optional[str] = None
    sku: Optional[str] = None
    regular_price: Decimal = field(default_factory=lambda: Decimal("0"))
    is_gift: bool = False

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Item quantity must be greater than 0: {self.quantity}",
                field="quantity",
            )
        if self.unit_price < 0:
            raise DomainValidationException(
                f"Item price cannot be negative: {self.unit_price}",
                field="unit_price",
            )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class StatusHistoryEntry:
    """状态历史（只追加）"""

    status: OrderStatus
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    note: Optional[str] = None
    actor: Optional[str] = None

    def __post_init__(self):
        self.timestamp = _ensure_utc(self.timestamp)


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. order_ref 对外可见且稳定
    2. payment_status=paid 为终态，任何路径不得降级
    3. order_status=cancelled 意味着库存已回补且只回补一次
    4. 订单从不删除，只能转为 cancelled
    """

    id: Optional[int]
    order_ref: str
    user_id: Optional[int]
    items: List[OrderItem]
    subtotal: Decimal
    total_amount: Decimal
    discount: Decimal = field(default_factory=lambda: Decimal("0"))
    shipping_cost: Decimal = field(default_factory=lambda: Decimal("0"))
    currency: str = "INR"
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.PENDING
    payment_method: str = "phonepe"
    gateway_transaction_id: Optional[str] = None
    cart_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    placed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.items:
            raise DomainValidationException("Order must have at least one item", field="items")
        if self.total_amount < 0:
            raise DomainValidationException(
                f"Order total cannot be negative: {self.total_amount}",
                field="total_amount",
            )
        self.placed_at = _ensure_utc(self.placed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_cancelled(self) -> bool:
        return self.order_status == OrderStatus.CANCELLED

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def amount_minor(self) -> int:
        """订单应付金额（最小货币单位）"""
        return to_minor_units(self.total_amount, self.currency)
