"""
Payment-related settings using pydantic-settings v2 with nested env keys.

All keys are read with the ``PAYMENT__`` prefix, e.g.
``PAYMENT__PHONEPE__CLIENT_ID`` or ``PAYMENT__REDIRECT__TTL_SECONDS``.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class InventoryRetry(BaseModel):
    """Backoff for the stock-releasing failure transition."""
    attempts: int = 3
    base_backoff: float = 0.1
    max_backoff: float = 2.0


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class RedirectSettings(BaseModel):
    token_secret: Optional[str] = None  # falls back to settings.SECRET_KEY
    algorithm: str = "HS256"
    ttl_seconds: int = 3600
    # Only the gateway's answer drives transitions, so a bare orderId is safe to poll.
    allow_raw_order_ref: bool = True
    confirmation_path: str = "/order-confirmation"


class PhonePeSettings(BaseModel):
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    client_version: str = "1"
    environment: str = "sandbox"  # sandbox | production
    callback_username: Optional[str] = None
    callback_password: Optional[str] = None
    expire_after: int = 1200  # seconds the checkout page stays valid
    redirect_base_url: str = "http://localhost:8000/api/v1/payments/phonepe/redirect"

    sandbox_auth_url: str = "https://api-preprod.phonepe.com/apis/pg-sandbox"
    sandbox_pg_url: str = "https://api-preprod.phonepe.com/apis/pg-sandbox"
    production_auth_url: str = "https://api.phonepe.com/apis/identity-manager"
    production_pg_url: str = "https://api.phonepe.com/apis/pg"

    @property
    def auth_base_url(self) -> str:
        return self.production_auth_url if self.environment == "production" else self.sandbox_auth_url

    @property
    def pg_base_url(self) -> str:
        return self.production_pg_url if self.environment == "production" else self.sandbox_pg_url


class PaymentSettings(BaseSettings):
    provider: str = "phonepe"
    currency: str = "INR"
    stale_after_minutes: int = 30
    sweep_batch_size: int = 100
    sweep_interval_seconds: int = 300

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    inventory_retry: InventoryRetry = Field(default_factory=InventoryRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    redirect: RedirectSettings = Field(default_factory=RedirectSettings)

    phonepe: PhonePeSettings = Field(default_factory=PhonePeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
