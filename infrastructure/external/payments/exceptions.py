"""
Exceptions for payment providers mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from application.ports.payment_gateway import GatewayError
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(GatewayError):
    """Provider answered with a non-retryable error (4xx, unexpected payload)."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )


class PaymentRecoverableError(GatewayError):
    """Transport failure, timeout or 5xx; safe to retry later."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_RECOVERABLE,
            message=message,
            error_type="PaymentRecoverableError",
            details=full_details,
        )


class PaymentOrderNotFound(GatewayError):
    """Status endpoint answered 404: the gateway holds no checkout for this order."""

    def __init__(self, order_ref: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider, "order_ref": order_ref}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.GATEWAY_ORDER_NOT_FOUND,
            message=f"Gateway has no order {order_ref}",
            error_type="PaymentOrderNotFound",
            details=full_details,
        )


class PaymentSignatureError(GatewayError):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )


class MalformedCallbackError(GatewayError):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.MALFORMED_CALLBACK,
            message=message,
            error_type="MalformedCallbackError",
            details=full_details,
        )
