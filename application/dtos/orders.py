"""
Order and reconciliation DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from domain.order.entity import Order
from domain.order.state_machine import ReconciliationState, state_of

RedirectStatus = Literal["success", "failed", "pending", "invalid", "expired"]


class PlaceOrderItem(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)
    variant_id: Optional[str] = None
    is_gift: bool = False


class PlaceOrder(BaseModel):
    items: list[PlaceOrderItem] = Field(min_length=1)
    user_id: Optional[int] = None
    cart_id: Optional[str] = None
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class OrderItemView(BaseModel):
    product_id: int
    variant_id: Optional[str] = None
    sku: Optional[str] = None
    name: str
    quantity: int
    unit_price: Decimal
    is_gift: bool = False


class OrderView(BaseModel):
    """Read-only projection of an order's payment state."""
    order_ref: str
    payment_status: str
    order_status: str
    reconciliation_state: ReconciliationState
    total_amount: Decimal
    amount_minor: int
    currency: str
    payment_method: str
    gateway_transaction_id: Optional[str] = None
    items: list[OrderItemView] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderView":
        return cls(
            order_ref=order.order_ref,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            reconciliation_state=state_of(order),
            total_amount=order.total_amount,
            amount_minor=order.amount_minor(),
            currency=order.currency,
            payment_method=order.payment_method,
            gateway_transaction_id=order.gateway_transaction_id,
            items=[
                OrderItemView(
                    product_id=i.product_id,
                    variant_id=i.variant_id,
                    sku=i.sku,
                    name=i.name,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    is_gift=i.is_gift,
                )
                for i in order.items
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class ReconcileOutcome(BaseModel):
    """Result of offering one observed gateway outcome to the guard.

    ``applied`` is True only for the observer that won the conditional
    update; every other observer gets ``applied=False`` and a ``reason``.
    """
    order_ref: str
    applied: bool
    state: Optional[ReconciliationState] = None
    reason: str = ""
    released_units: int = 0


class InitiatePaymentRequest(BaseModel):
    """Body of ``POST /payments/phonepe/initiate`` (amount in minor units)."""
    order_ref: str = Field(alias="orderId", min_length=1)
    amount: int = Field(gt=0)

    model_config = ConfigDict(populate_by_name=True)


class InitiationResult(BaseModel):
    order_ref: str
    attempt_id: str
    redirect_url: str
    gateway_order_id: Optional[str] = None
    expire_at: Optional[int] = None


class WebhookResult(BaseModel):
    acknowledged: bool = True
    order_ref: Optional[str] = None
    event_type: Optional[str] = None
    outcome: str = ""


class RedirectResolution(BaseModel):
    status: RedirectStatus
    order_ref: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: str = Field(default="Cancelled by administrator", min_length=1, max_length=255)
