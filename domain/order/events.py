"""
Order domain events.

Dataclass events record reconciliation outcomes for downstream handling
(notifications, dashboards). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_ref: str
    source: str  # webhook, redirect, admin, sweeper, checkout
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass
class OrderPlaced(OrderEvent):
    total_amount: str = ""
    items_count: int = 0


@dataclass
class OrderPaid(OrderEvent):
    total_amount: str = ""
    items_count: int = 0
    transaction_id: Optional[str] = None


@dataclass
class OrderCancelled(OrderEvent):
    reason: Optional[str] = None
    released_units: int = 0


@dataclass
class PaymentInitiationFailed(OrderEvent):
    reason: Optional[str] = None


@dataclass
class LatePaymentReceived(OrderEvent):
    """Gateway reported success for an order that was already cancelled."""
    transaction_id: Optional[str] = None
