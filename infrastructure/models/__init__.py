"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel, OrderStatusHistoryModel
from .payment import PaymentRecordModel
from .cart import CartModel
from .inventory import ProductModel, ProductVariantModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "OrderStatusHistoryModel",
    "PaymentRecordModel",
    "CartModel",
    "ProductModel",
    "ProductVariantModel",
]
