"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts crossing the gateway boundary are integers in minor units
(paise for INR).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field, field_validator

GatewayState = Literal["pending", "success", "failed"]

# Canonical callback event types
CHECKOUT_ORDER_COMPLETED = "CHECKOUT_ORDER_COMPLETED"
CHECKOUT_ORDER_FAILED = "CHECKOUT_ORDER_FAILED"


class InitiatePayment(BaseModel):
    order_ref: str = Field(min_length=1)
    amount: int = Field(gt=0)
    redirect_url: str
    message: Optional[str] = None
    expire_after: Optional[int] = None

    @field_validator("order_ref")
    @classmethod
    def _strip_ref(cls, v: str) -> str:
        return v.strip()


class PaymentRedirect(BaseModel):
    provider: str
    order_ref: str
    redirect_url: str
    gateway_order_id: Optional[str] = None
    state: Optional[str] = None
    expire_at: Optional[int] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayOrderStatus(BaseModel):
    """Authoritative order state as reported by the gateway."""
    provider: str
    order_ref: str
    state: GatewayState
    provider_state: Optional[str] = None
    transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    amount: Optional[int] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class CallbackEvent(BaseModel):
    provider: str
    event_type: str
    order_ref: Optional[str] = None
    state: Optional[str] = None
    transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    amount: Optional[int] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: Optional[datetime] = None
