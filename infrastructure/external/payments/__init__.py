"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import GatewayClient


def get_gateway_client(provider: Optional[str] = None) -> GatewayClient:
    name = (provider or payment_settings.provider).lower()
    if name == "phonepe":
        from .phonepe_client import PhonePeClient
        return PhonePeClient()
    raise ValueError(f"Unsupported payment provider: {name}")
