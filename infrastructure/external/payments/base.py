"""
网关客户端公共部分：httpx 连接复用、tenacity 重试、凭据检查与状态映射。

子类只负责各服务商的报文格式；所有传输层失败在这里统一变成
GatewayUnavailableError，业务层不会看到 httpx/SDK 的异常类型。
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import GatewayUnavailableError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

_TRANSPORT_ERRORS = (httpx.TimeoutException, httpx.TransportError)


class BasePaymentClient:
    provider: str = "base"
    eager_order: bool = False

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    @staticmethod
    def _timeout() -> httpx.Timeout:
        cfg = payment_settings.timeouts
        return httpx.Timeout(cfg.total, connect=cfg.connect, read=cfg.read, write=cfg.write)

    def _retrying(self, retry_on: tuple[type[BaseException], ...]) -> AsyncRetrying:
        cfg = payment_settings.retry
        return AsyncRetrying(
            stop=stop_after_attempt(int(cfg.max) + 1),
            wait=wait_exponential(multiplier=cfg.base_backoff, min=0.1, max=2.0),
            retry=retry_if_exception_type(retry_on),
            reraise=True,
        )

    def _unreachable(self, exc: BaseException, **context: Any) -> GatewayUnavailableError:
        logger.warning("payment_gateway_unreachable", provider=self.provider, error=type(exc).__name__, **context)
        return GatewayUnavailableError(self.provider, reason="unreachable")

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """发送请求；超时/连接错误按配置重试，耗尽后视为网关不可用"""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout(), transport=self._transport)
        try:
            async for attempt in self._retrying(_TRANSPORT_ERRORS):
                with attempt:
                    return await self._http.request(method, url, **kwargs)
        except _TRANSPORT_ERRORS as exc:
            raise self._unreachable(exc, url=url) from exc

    async def aclose(self) -> None:
        if self._http is not None:
            try:
                await self._http.aclose()
            finally:
                self._http = None

    def _require_credentials(self, **values: Optional[str]) -> None:
        """凭据缺失时在发出任何请求之前失败"""
        missing = [name for name, value in values.items() if not value]
        if missing:
            logger.error("payment_gateway_misconfigured", provider=self.provider, missing=missing)
            raise GatewayUnavailableError(self.provider, reason="misconfigured", details={"missing": missing})

    def _map_status(self, provider_status: Any) -> str:
        # 未识别的状态按 PENDING 处理，交给后续查询/对账
        return PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {}).get(str(provider_status), "PENDING")

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
