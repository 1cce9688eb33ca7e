"""
Request ID 中间件
生成或透传追踪ID；路径里带订单号的请求同时绑定 order_ref，便于按订单检索回调、跳转与对账日志
"""
import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog


# 上游透传的ID只接受可打印的短串，避免日志注入
_INBOUND_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")
_ORDER_PATH = re.compile(r"/orders/(?P<order_ref>[A-Za-z0-9]+)(?:/|$)")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Request ID 追踪中间件"""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(self.HEADER_NAME, "")
        request_id = inbound if _INBOUND_ID.match(inbound) else str(uuid.uuid4())
        request.state.request_id = request_id

        context = {"request_id": request_id, "method": request.method, "path": request.url.path}
        match = _ORDER_PATH.search(request.url.path)
        if match:
            context["order_ref"] = match.group("order_ref")
        # 跳转回调只在查询串里带订单号
        elif request.query_params.get("orderId"):
            context["order_ref"] = request.query_params["orderId"][:64]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)
        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response
