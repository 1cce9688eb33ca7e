"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_ref: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message=f"Order {order_ref} not found",
            error_type="OrderNotFound",
            details={"order_ref": order_ref},
        )


class OrderAlreadyPaidException(BusinessException):
    def __init__(self, order_ref: str):
        super().__init__(
            code=BusinessCode.ORDER_ALREADY_PAID,
            message=f"Order {order_ref} is already paid",
            error_type="OrderAlreadyPaid",
            details={"order_ref": order_ref},
        )


class OrderNotPayableException(BusinessException):
    def __init__(self, order_ref: str, order_status: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_PAYABLE,
            message=f"Order {order_ref} cannot be paid in status {order_status}",
            error_type="OrderNotPayable",
            details={"order_ref": order_ref, "order_status": order_status},
        )


class AmountMismatchException(BusinessException):
    def __init__(self, order_ref: str, expected: int, received: int):
        super().__init__(
            code=BusinessCode.AMOUNT_MISMATCH,
            message="Payment amount does not match order total",
            error_type="AmountMismatch",
            details={"order_ref": order_ref, "expected": expected, "received": received},
            field="amount",
        )


class InsufficientStockException(BusinessException):
    def __init__(self, sku: Optional[str], requested: int):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_STOCK,
            message=f"Insufficient stock for {sku}",
            error_type="InsufficientStock",
            details={"sku": sku, "requested": requested},
        )


class ProductNotFoundException(BusinessException):
    def __init__(self, product_id: int, variant_id: Optional[str] = None):
        details: dict = {"product_id": product_id}
        if variant_id is not None:
            details["variant_id"] = variant_id
        super().__init__(
            code=BusinessCode.PRODUCT_NOT_FOUND,
            message="Product not found",
            error_type="ProductNotFound",
            details=details,
        )


class InventoryReleaseError(BusinessException):
    """库存回补失败：订单状态与库存必须保持一致，不允许吞掉"""

    def __init__(self, order_ref: str, reason: str, *, quantity: Optional[int] = None):
        details: dict = {"order_ref": order_ref, "reason": reason}
        if quantity is not None:
            details["quantity"] = quantity
        super().__init__(
            code=BusinessCode.INVENTORY_RELEASE_FAILED,
            message=f"Failed to release stock for order {order_ref}",
            error_type="InventoryReleaseError",
            details=details,
        )


class DuplicateOrderException(BusinessException):
    """订单号或下单幂等键冲突"""

    def __init__(self, order_ref: str, idempotency_key: Optional[str] = None):
        super().__init__(
            code=BusinessCode.ORDER_CONFLICT,
            message="Order already exists",
            error_type="DuplicateOrder",
            details={"order_ref": order_ref, "idempotency_key": idempotency_key},
        )
