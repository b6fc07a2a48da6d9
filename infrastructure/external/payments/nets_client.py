"""
NETS QR adapter (QR polling flow) over httpx.

The shopper scans a QR code; the client then polls ``nets-qr/query`` until
``txn_status`` becomes 2 (paid) or 3 (failed). The sandbox answers 404 while a
transaction is still being processed, which is reported as PENDING. NETS QR
offers no refund API and no webhook push.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from application.dtos.payments import (
    CaptureResult,
    CreateIntent,
    IntentResult,
    QueryResult,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import PaymentNotCompletedError, RefundFailedError
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError


logger = get_logger(__name__)

REQUEST_PATH = "/api/v1/common/payments/nets-qr/request"
QUERY_PATH = "/api/v1/common/payments/nets-qr/query"


class NetsClient(BasePaymentClient):
    provider = "nets"

    @property
    def api_base(self) -> str:
        return payment_settings.nets.api_base.rstrip("/")

    def _headers(self) -> dict[str, str]:
        cfg = payment_settings.nets
        self._require_credentials(api_key=cfg.api_key, project_id=cfg.project_id)
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "api-key": str(cfg.api_key),
            "project-id": str(cfg.project_id),
        }

    @staticmethod
    def _data(body: dict[str, Any]) -> dict[str, Any]:
        return ((body.get("result") or {}).get("data")) or {}

    async def create_intent(self, req: CreateIntent) -> IntentResult:
        headers = self._headers()
        txn_id = f"{payment_settings.nets.txn_id_prefix}_{req.reference}"
        payload = {
            "txn_id": txn_id,
            "amt_in_dollars": float(Decimal(req.amount).quantize(Decimal("0.01"))),
            "notify_mobile": 0,
        }
        resp = await self._send("POST", f"{self.api_base}{REQUEST_PATH}", json=payload, headers=headers)
        if resp.status_code != 200:
            logger.warning("nets_request_failed", http_status=resp.status_code, txn_id=txn_id)
            raise PaymentProviderError(provider=self.provider, provider_code=str(resp.status_code))
        data = self._data(resp.json())
        if not data.get("qr_code") or not data.get("txn_retrieval_ref"):
            logger.warning("nets_request_incomplete", txn_id=txn_id, response_code=data.get("response_code"))
            raise PaymentProviderError(provider=self.provider, provider_code=str(data.get("response_code")))
        ref = str(data["txn_retrieval_ref"])
        self._log("payment_intent_created", provider_ref=ref, txn_id=txn_id)
        return IntentResult(
            provider=self.provider,
            provider_ref=ref,
            status="PENDING",
            client_params={
                "qr_code": f"data:image/png;base64,{data['qr_code']}",
                "txn_id": txn_id,
                "timeout_seconds": 300,
            },
        )

    async def query_intent(self, provider_ref: str) -> QueryResult:
        headers = self._headers()
        payload = {"txn_retrieval_ref": provider_ref, "frontend_timeout_status": 1}
        resp = await self._send("POST", f"{self.api_base}{QUERY_PATH}", json=payload, headers=headers)
        if resp.status_code == 404:
            return QueryResult(provider=self.provider, provider_ref=provider_ref, status="PENDING")
        if resp.status_code != 200:
            logger.warning("nets_query_failed", http_status=resp.status_code, provider_ref=provider_ref)
            raise PaymentProviderError(provider=self.provider, provider_code=str(resp.status_code))
        txn_status = self._data(resp.json()).get("txn_status")
        return QueryResult(
            provider=self.provider,
            provider_ref=provider_ref,
            status=self._map_status(txn_status),
            provider_status=str(txn_status) if txn_status is not None else None,
        )

    async def capture_intent(self, provider_ref: str) -> CaptureResult:
        """QR 支付无独立扣款步骤；以查询结果为准"""
        result = await self.query_intent(provider_ref)
        if result.status != "PAID":
            raise PaymentNotCompletedError(self.provider, provider_ref, status=result.provider_status)
        return CaptureResult(provider=self.provider, provider_ref=provider_ref, status="PAID")

    async def refund(self, req: RefundRequest) -> RefundResult:
        raise RefundFailedError(self.provider, "NETS QR does not support refunds")

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        raise PaymentProviderError(
            "Webhooks are not supported for this provider",
            provider=self.provider,
            provider_code="WEBHOOK_UNSUPPORTED",
        )
