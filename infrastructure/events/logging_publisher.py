"""
Event publisher that records domain events as structured log lines.

Notification fan-out is owned by another subsystem which tails these
``domain_event`` records.
"""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime

from application.ports.event_publisher import EventPublisher
from core.logging_config import get_logger
from domain.order.events import OrderEvent


logger = get_logger("domain.events")


class LoggingEventPublisher(EventPublisher):
    async def publish(self, event: OrderEvent) -> None:
        data = {
            k: (v.isoformat() if isinstance(v, datetime) else v)
            for k, v in asdict(event).items()
        }
        logger.info("domain_event", event_name=event.name, **data)
