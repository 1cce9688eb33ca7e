"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from typing import Any, Callable, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import (
    CallbackEvent,
    GatewayOrderStatus,
    InitiatePayment,
    PaymentRedirect,
)
from application.ports.payment_gateway import GatewayClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)
from shared.codes.payment_codes import PROVIDER_EVENT_TO_INTERNAL, PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient(GatewayClient):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send with transport retries; map what is left to provider errors."""
        async def _do() -> httpx.Response:
            async with self.client() as c:
                return await c.request(method, url, **kwargs)

        try:
            resp = await self._retry(_do)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            self._log("payment_gateway_transport_error", url=url, error=str(exc))
            raise PaymentRecoverableError(str(exc) or type(exc).__name__, provider=self.provider) from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise PaymentRecoverableError(
                f"Gateway answered {resp.status_code}",
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        if resp.status_code >= 400:
            raise PaymentProviderError(
                f"Gateway rejected request with {resp.status_code}",
                provider=self.provider,
                provider_code=self._error_code(resp),
                details={"status_code": resp.status_code},
            )
        return resp

    @staticmethod
    def _error_code(resp: httpx.Response) -> Optional[str]:
        try:
            body = resp.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("code") or body.get("errorCode")
        return None

    # Default implementations raise to force override where needed
    async def initiate(self, req: InitiatePayment) -> PaymentRedirect:  # type: ignore[override]
        raise NotImplementedError

    async def get_status(self, order_ref: str) -> GatewayOrderStatus:  # type: ignore[override]
        raise NotImplementedError

    def verify_callback(self, authorization: str | None, body: bytes) -> CallbackEvent:  # type: ignore[override]
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get((provider_status or "").upper(), "pending")

    def _map_event(self, provider_event: str) -> str:
        mapping = PROVIDER_EVENT_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_event, provider_event)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
