"""
PhonePe Standard Checkout (v2) adapter over httpx.

Flow used here:
- OAuth client-credentials token from ``/v1/oauth/token``; requests carry
  ``Authorization: O-Bearer <access_token>``.
- ``POST /checkout/v2/pay`` creates the checkout page for a merchant order id.
- ``GET /checkout/v2/order/{merchantOrderId}/status`` returns the
  authoritative order state (PENDING / COMPLETED / FAILED).
- Callbacks carry ``Authorization: sha256(username:password)`` configured on
  the merchant dashboard and a JSON body ``{"event": ..., "payload": {...}}``.

The merchant order id is always our ``order_ref`` so that re-initiation and
status polling address the same gateway order.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CallbackEvent,
    GatewayOrderStatus,
    InitiatePayment,
    PaymentRedirect,
)
from core.logging_config import get_logger
from core.settings import PhonePeSettings, payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    MalformedCallbackError,
    PaymentOrderNotFound,
    PaymentProviderError,
    PaymentSignatureError,
)


logger = get_logger(__name__)

# refresh the OAuth token this many seconds before it expires
_TOKEN_SKEW_SECONDS = 60


def callback_authorization(username: str, password: str) -> str:
    """Expected ``Authorization`` header value for PhonePe callbacks."""
    return hashlib.sha256(f"{username}:{password}".encode("utf-8")).hexdigest()


class PhonePeClient(BasePaymentClient):
    provider = "phonepe"

    def __init__(
        self,
        config: Optional[PhonePeSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self._cfg = config or payment_settings.phonepe
        if not (self._cfg.client_id and self._cfg.client_secret):
            raise RuntimeError("PAYMENT__PHONEPE__CLIENT_ID / CLIENT_SECRET not configured")
        self._token: Optional[str] = None
        self._token_type = "O-Bearer"
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    # ------------------------------------------------------------------ auth
    async def _access_token(self) -> str:
        async with self._token_lock:
            if self._token and time.time() < self._token_expires_at - _TOKEN_SKEW_SECONDS:
                return self._token
            resp = await self._send(
                "POST",
                f"{self._cfg.auth_base_url}/v1/oauth/token",
                data={
                    "client_id": self._cfg.client_id,
                    "client_version": self._cfg.client_version,
                    "client_secret": self._cfg.client_secret,
                    "grant_type": "client_credentials",
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            body = self._json(resp)
            token = body.get("access_token")
            if not token:
                raise PaymentProviderError("OAuth response without access_token", provider=self.provider)
            self._token = token
            self._token_type = body.get("token_type") or "O-Bearer"
            self._token_expires_at = float(body.get("expires_at") or (time.time() + 300))
            self._log("phonepe_token_refreshed", expires_at=int(self._token_expires_at))
            return token

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._access_token()
        return {
            "Content-Type": "application/json",
            "Authorization": f"{self._token_type} {token}",
        }

    def _json(self, resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise PaymentProviderError("Gateway returned non-JSON body", provider=self.provider) from exc
        if not isinstance(body, dict):
            raise PaymentProviderError("Gateway returned unexpected body", provider=self.provider)
        return body

    # --------------------------------------------------------------- payment
    async def initiate(self, req: InitiatePayment) -> PaymentRedirect:  # type: ignore[override]
        payload = {
            "merchantOrderId": req.order_ref,
            "amount": req.amount,
            "expireAfter": req.expire_after or self._cfg.expire_after,
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "message": req.message or f"Payment for order {req.order_ref}",
                "merchantUrls": {"redirectUrl": req.redirect_url},
            },
        }
        resp = await self._send(
            "POST",
            f"{self._cfg.pg_base_url}/checkout/v2/pay",
            json=payload,
            headers=await self._auth_headers(),
        )
        body = self._json(resp)
        redirect_url = body.get("redirectUrl")
        if not redirect_url:
            raise PaymentProviderError(
                "Checkout response without redirectUrl",
                provider=self.provider,
                details={"order_ref": req.order_ref},
            )
        self._log(
            "phonepe_checkout_created",
            order_ref=req.order_ref,
            gateway_order_id=body.get("orderId"),
            state=body.get("state"),
        )
        return PaymentRedirect(
            provider=self.provider,
            order_ref=req.order_ref,
            redirect_url=redirect_url,
            gateway_order_id=body.get("orderId"),
            state=body.get("state"),
            expire_at=body.get("expireAt"),
            raw=body,
        )

    async def get_status(self, order_ref: str) -> GatewayOrderStatus:  # type: ignore[override]
        headers = await self._auth_headers()
        try:
            resp = await self._send(
                "GET",
                f"{self._cfg.pg_base_url}/checkout/v2/order/{order_ref}/status",
                params={"details": "false"},
                headers=headers,
            )
        except PaymentProviderError as exc:
            # only a 404 from the status endpoint means the checkout does not exist
            if exc.details.get("status_code") == 404:
                raise PaymentOrderNotFound(order_ref, provider=self.provider) from exc
            raise
        body = self._json(resp)
        provider_state = str(body.get("state") or "")
        status = GatewayOrderStatus(
            provider=self.provider,
            order_ref=order_ref,
            state=self._map_status(provider_state),
            provider_state=provider_state or None,
            transaction_id=self._transaction_id(body),
            gateway_order_id=body.get("orderId"),
            amount=self._amount(body.get("amount")),
            raw=body,
        )
        self._log("phonepe_status_polled", order_ref=order_ref, state=status.state)
        return status

    # -------------------------------------------------------------- callback
    def verify_callback(self, authorization: str | None, body: bytes) -> CallbackEvent:  # type: ignore[override]
        username = self._cfg.callback_username
        password = self._cfg.callback_password
        if not (username and password):
            raise PaymentSignatureError("Callback credentials not configured", provider=self.provider)
        if not authorization:
            raise PaymentSignatureError("Missing Authorization header", provider=self.provider)
        presented = authorization.strip()
        # some proxies prefix the hash with the scheme used on the dashboard
        if presented.upper().startswith("SHA256 "):
            presented = presented[7:].strip()
        expected = callback_authorization(username, password)
        if not hmac.compare_digest(presented.lower(), expected):
            raise PaymentSignatureError("Callback authorization mismatch", provider=self.provider)

        try:
            doc = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedCallbackError("Callback body is not valid JSON", provider=self.provider) from exc
        if not isinstance(doc, dict):
            raise MalformedCallbackError("Callback body must be an object", provider=self.provider)

        raw_event = doc.get("event") or doc.get("type")
        payload = doc.get("payload")
        if not raw_event or not isinstance(payload, dict):
            raise MalformedCallbackError(
                "Callback missing event or payload",
                provider=self.provider,
            )
        return CallbackEvent(
            provider=self.provider,
            event_type=self._map_event(str(raw_event)),
            order_ref=payload.get("merchantOrderId"),
            state=payload.get("state"),
            transaction_id=self._transaction_id(payload),
            gateway_order_id=payload.get("orderId"),
            amount=self._amount(payload.get("amount")),
            payload=doc,
            received_at=datetime.now(timezone.utc),
        )

    # --------------------------------------------------------------- helpers
    @staticmethod
    def _amount(value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _transaction_id(body: dict[str, Any]) -> Optional[str]:
        details = body.get("paymentDetails") or []
        if not isinstance(details, list) or not details:
            return body.get("transactionId")
        completed = [d for d in details if isinstance(d, dict) and d.get("state") == "COMPLETED"]
        chosen = (completed or [d for d in details if isinstance(d, dict)] or [{}])[-1]
        return chosen.get("transactionId")
