"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    MALFORMED_CALLBACK = 60005
    GATEWAY_ORDER_NOT_FOUND = 60006


# Provider order state -> internal gateway state (pending/success/failed)
PROVIDER_STATUS_TO_INTERNAL = {
    "phonepe": {
        "PENDING": "pending",
        "COMPLETED": "success",
        "FAILED": "failed",
    },
}

# Provider callback event -> canonical event type
PROVIDER_EVENT_TO_INTERNAL = {
    "phonepe": {
        "checkout.order.completed": "CHECKOUT_ORDER_COMPLETED",
        "checkout.order.failed": "CHECKOUT_ORDER_FAILED",
        "CHECKOUT_ORDER_COMPLETED": "CHECKOUT_ORDER_COMPLETED",
        "CHECKOUT_ORDER_FAILED": "CHECKOUT_ORDER_FAILED",
    },
}
