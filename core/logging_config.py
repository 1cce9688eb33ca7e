"""
Structlog 日志配置模块

API 进程与 Celery worker 共用同一条处理链：contextvars 合并（request_id/order_ref）、
凭据脱敏、时间戳，最后按环境选择控制台或 JSON 渲染。
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


# 回调 Authorization、跳转令牌与 OAuth 凭据不得出现在日志里
REDACTED_KEYS = frozenset({
    "authorization",
    "token",
    "access_token",
    "client_secret",
    "callback_password",
    "secret_key",
})


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    for key in list(event_dict):
        if key.lower() in REDACTED_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def get_renderer() -> Any:
    """DEBUG 下用彩色控制台输出，其余环境输出单行 JSON"""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    # structlog 会传入 default 等关键字参数
    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)

    return JSONRenderer(serializer=_dumps)


def configure_logging() -> None:
    """配置 structlog，并把标准库 logging（uvicorn、celery、sqlalchemy）接入同一渲染器。"""
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared_pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=shared_pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    level = settings.LOG_LEVEL or ("DEBUG" if settings.DEBUG else "INFO")
    root.setLevel(level.upper())

    # 第三方客户端的逐请求日志只在需要时打开
    for noisy in ("httpx", "httpcore", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)
