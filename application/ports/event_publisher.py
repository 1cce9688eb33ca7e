"""
Domain event publisher port.

Reconciliation publishes outcome events after its transaction commits so
that downstream consumers (notifications, analytics) never see an event for
a transition that was rolled back.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.order.events import OrderEvent


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, event: OrderEvent) -> None: ...
