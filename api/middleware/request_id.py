"""
Request ID 中间件
生成或透传追踪ID，绑定到 structlog 上下文，供收银/回调日志串联
"""
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


class RequestIDMiddleware(BaseHTTPMiddleware):
    """从 X-Request-ID 取追踪ID（缺省时生成），并回写到响应头"""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or uuid.uuid4().hex
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip_of(request),
            route=f"{request.method} {request.url.path}",
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response


def client_ip_of(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")


def bind_account_id(account_id: int) -> None:
    """认证通过后把账户ID绑定到日志上下文"""
    structlog.contextvars.bind_contextvars(account_id=account_id)
