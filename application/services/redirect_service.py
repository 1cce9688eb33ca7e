"""
支付跳转解析 - 用户从网关收银台返回时确定订单结果

跳转令牌（JWT HS256）只证明“这个订单号是我们签发的”，
订单状态只由网关查询结果驱动，并通过对账守卫的条件更新落库。
解析结果恒为 success / failed / pending / invalid / expired 之一，
不会把异常抛给浏览器。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import urlencode

import jwt

from application.dtos.orders import RedirectResolution, RedirectStatus
from application.ports.payment_gateway import GatewayClient, GatewayError
from application.services.reconciliation import ReconciliationGuard
from core.config import settings
from core.logging_config import get_logger
from core.settings import RedirectSettings, payment_settings
from domain.common.exceptions import InventoryReleaseError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.state_machine import ReconciliationState, state_of


logger = get_logger(__name__)

REDIRECT_PURPOSE = "payment_redirect"

_STATE_TO_REDIRECT: dict[ReconciliationState, RedirectStatus] = {
    ReconciliationState.PAID: "success",
    ReconciliationState.CANCELLED: "failed",
    ReconciliationState.FAILED: "failed",
    ReconciliationState.PENDING: "pending",
}


@dataclass
class DecodedRedirectToken:
    status: str  # valid | expired | invalid
    order_ref: Optional[str] = None


class RedirectTokenService:
    """签发与校验支付跳转令牌"""

    def __init__(self, config: Optional[RedirectSettings] = None, secret: Optional[str] = None):
        self._cfg = config or payment_settings.redirect
        self._secret = secret or self._cfg.token_secret or settings.SECRET_KEY

    def sign(self, order_ref: str, *, now: Optional[datetime] = None) -> str:
        issued = now or datetime.now(timezone.utc)
        to_encode = {
            "sub": order_ref,
            "purpose": REDIRECT_PURPOSE,
            "iat": issued,
            "exp": issued + timedelta(seconds=self._cfg.ttl_seconds),
        }
        return jwt.encode(to_encode, self._secret, algorithm=self._cfg.algorithm)

    def decode(self, token: str) -> DecodedRedirectToken:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._cfg.algorithm])
        except jwt.ExpiredSignatureError:
            # 签名有效但已过期：仍可取回订单号用于展示
            try:
                payload = jwt.decode(
                    token,
                    self._secret,
                    algorithms=[self._cfg.algorithm],
                    options={"verify_exp": False},
                )
            except jwt.PyJWTError:
                return DecodedRedirectToken(status="invalid")
            if payload.get("purpose") != REDIRECT_PURPOSE:
                return DecodedRedirectToken(status="invalid")
            return DecodedRedirectToken(status="expired", order_ref=payload.get("sub"))
        except jwt.PyJWTError:
            return DecodedRedirectToken(status="invalid")

        order_ref = payload.get("sub")
        if payload.get("purpose") != REDIRECT_PURPOSE or not order_ref:
            return DecodedRedirectToken(status="invalid")
        return DecodedRedirectToken(status="valid", order_ref=order_ref)

    def redirect_url(self, base_url: str, order_ref: str) -> str:
        """网关 merchantUrls.redirectUrl：携带令牌与订单号"""
        query = urlencode({"token": self.sign(order_ref), "orderId": order_ref})
        sep = "&" if "?" in base_url else "?"
        return f"{base_url}{sep}{query}"


class RedirectResolver:
    """用户跳转回站时解析支付结果"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: GatewayClient,
        guard: ReconciliationGuard,
        tokens: Optional[RedirectTokenService] = None,
        *,
        config: Optional[RedirectSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._guard = guard
        self._cfg = config or payment_settings.redirect
        self._tokens = tokens or RedirectTokenService(self._cfg)

    def confirmation_url(self, resolution: RedirectResolution) -> str:
        params = {"status": resolution.status}
        if resolution.order_ref:
            params["orderId"] = resolution.order_ref
        return f"{settings.FRONTEND_URL}{self._cfg.confirmation_path}?{urlencode(params)}"

    async def resolve(self, token: Optional[str], raw_order_ref: Optional[str]) -> RedirectResolution:
        order_ref = self._authenticate(token, raw_order_ref)
        if isinstance(order_ref, RedirectResolution):
            return order_ref

        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_ref(order_ref)
        if order is None:
            logger.info("redirect_order_not_found", order_ref=order_ref)
            return RedirectResolution(status="invalid", order_ref=order_ref)

        stored = state_of(order)
        if stored in (ReconciliationState.PAID, ReconciliationState.CANCELLED):
            return RedirectResolution(status=_STATE_TO_REDIRECT[stored], order_ref=order_ref)

        try:
            status = await self._gateway.get_status(order_ref)
        except GatewayError as exc:
            # 查询失败：报告最后已知状态，不做推测
            logger.warning(
                "redirect_status_poll_failed",
                order_ref=order_ref,
                error_type=exc.error_type,
                error=exc.message,
            )
            return RedirectResolution(status=_STATE_TO_REDIRECT[stored], order_ref=order_ref)

        try:
            outcome = await self._guard.apply_gateway_status(status, source="redirect")
        except InventoryReleaseError as exc:
            logger.error("redirect_reconcile_failed", order_ref=order_ref, error=exc.message)
            return RedirectResolution(status="pending", order_ref=order_ref)

        resolved = _STATE_TO_REDIRECT.get(outcome.state, "pending") if outcome.state else "invalid"
        logger.info(
            "redirect_resolved",
            order_ref=order_ref,
            gateway_state=status.state,
            applied=outcome.applied,
            reason=outcome.reason,
            status=resolved,
        )
        return RedirectResolution(status=resolved, order_ref=order_ref)

    def _authenticate(self, token: Optional[str], raw_order_ref: Optional[str]):
        raw_order_ref = (raw_order_ref or "").strip() or None
        if token:
            decoded = self._tokens.decode(token)
            if decoded.status == "invalid":
                logger.warning("redirect_token_invalid", order_ref=raw_order_ref)
                return RedirectResolution(status="invalid", order_ref=raw_order_ref)
            if decoded.status == "expired":
                logger.info("redirect_token_expired", order_ref=decoded.order_ref)
                return RedirectResolution(status="expired", order_ref=decoded.order_ref)
            if raw_order_ref and raw_order_ref != decoded.order_ref:
                logger.warning(
                    "redirect_token_ref_mismatch",
                    token_ref=decoded.order_ref,
                    order_ref=raw_order_ref,
                )
                return RedirectResolution(status="invalid", order_ref=raw_order_ref)
            return decoded.order_ref
        if raw_order_ref and self._cfg.allow_raw_order_ref:
            return raw_order_ref
        return RedirectResolution(status="invalid", order_ref=raw_order_ref)
