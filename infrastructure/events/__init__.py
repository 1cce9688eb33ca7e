"""Event publisher adapters."""
from .logging_publisher import LoggingEventPublisher

__all__ = ["LoggingEventPublisher"]
