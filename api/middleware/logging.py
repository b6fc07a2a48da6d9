"""
请求日志中间件

每个请求一条开始、一条结束事件，附带耗时与状态码。请求体只在开关打开时
记录（截断并脱敏）；支付回调报文参与验签且含付款人信息，从不记录。
"""
import json
import time
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})
WEBHOOK_PREFIX = "/api/v1/payments/webhooks/"
MASKED_FIELDS = frozenset({
    "authorization",
    "access_token",
    "client_secret",
    "api_key",
    "secret",
    "token",
    "email",
    "payer_email",
})


def mask(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: "***" if str(k).lower() in MASKED_FIELDS else mask(v) for k, v in data.items()}
    if isinstance(data, list):
        return [mask(v) for v in data]
    return data


def _wants_body(request: Request) -> bool:
    if request.method not in ("POST", "PUT", "PATCH") or request.url.path.startswith(WEBHOOK_PREFIX):
        return False
    # X-Log-Body: true/false 覆盖默认开关
    override = (request.headers.get("X-Log-Body") or "").lower()
    if override in {"true", "1", "yes"}:
        return True
    if override in {"false", "0", "no"}:
        return False
    return settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT and settings.DEBUG


class LoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        context = await self._describe(request)
        logger.info("request_started", **context)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - started, 4),
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
                **context,
            )
            raise

        duration = time.perf_counter() - started
        response.headers["X-Process-Time"] = f"{duration:.3f}"

        status_code = response.status_code
        if status_code >= 500:
            log = logger.error
        elif status_code >= 400:
            log = logger.warning
        else:
            log = logger.info
        log("request_completed", status_code=status_code, duration=round(duration, 4), **context)
        return response

    async def _describe(self, request: Request) -> dict:
        context: dict[str, Any] = {}
        if request.query_params:
            context["query_params"] = mask(dict(request.query_params))
        if request.path_params:
            context["path_params"] = request.path_params
        if _wants_body(request):
            body = await request.body()
            if body:
                context["body"] = self._body_snippet(body, request.headers.get("content-type", ""))
        return context

    @staticmethod
    def _body_snippet(body: bytes, content_type: str) -> Any:
        text = body[: settings.LOG_REQUEST_BODY_MAX_BYTES].decode("utf-8", errors="ignore")
        if "application/json" not in content_type.lower():
            return text
        try:
            return mask(json.loads(text))
        except ValueError:
            # 截断后的 JSON 无法解析，按文本记录
            return text
