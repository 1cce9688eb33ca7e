"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
The client is deliberately thin: it initiates a checkout, reads the
authoritative order state and authenticates callbacks. It never touches
persistence.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    CallbackEvent,
    GatewayOrderStatus,
    InitiatePayment,
    PaymentRedirect,
)
from domain.common.exceptions import BusinessException


class GatewayError(BusinessException):
    """Base for every error raised by a gateway adapter."""


@runtime_checkable
class GatewayClient(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    async def initiate(self, req: InitiatePayment) -> PaymentRedirect: ...

    async def get_status(self, order_ref: str) -> GatewayOrderStatus: ...

    def verify_callback(self, authorization: str | None, body: bytes) -> CallbackEvent: ...

    async def aclose(self) -> None: ...
