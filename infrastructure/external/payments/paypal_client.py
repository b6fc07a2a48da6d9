"""
PayPal Orders v2 adapter (redirect checkout) over httpx.

Flow: OAuth2 client-credentials token -> create order -> buyer approves on
PayPal -> capture on return. ``ORDER_ALREADY_CAPTURED`` is treated as success
after re-reading the order, so a duplicated return/capture is harmless.
"""
from __future__ import annotations

import json
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CaptureResult,
    CreateIntent,
    GatewayLineItem,
    IntentResult,
    QueryResult,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import PaymentNotCompletedError, RefundFailedError
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentSignatureError,
)


logger = get_logger(__name__)

WEBHOOK_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class PayPalClient(BasePaymentClient):
    provider = "paypal"

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport=transport)
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0

    @property
    def api_base(self) -> str:
        return payment_settings.paypal.api_base.rstrip("/")

    def _check_credentials(self) -> None:
        cfg = payment_settings.paypal
        self._require_credentials(client_id=cfg.client_id, client_secret=cfg.client_secret)

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        cfg = payment_settings.paypal
        resp = await self._send(
            "POST",
            f"{self.api_base}/v1/oauth2/token",
            auth=(cfg.client_id or "", cfg.client_secret or ""),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if resp.status_code != 200:
            logger.error("paypal_token_failed", http_status=resp.status_code)
            raise PaymentProviderError(provider=self.provider, provider_code=str(resp.status_code))
        data = resp.json()
        self._token = data["access_token"]
        # 提前一分钟过期，避免边界处使用失效令牌
        self._token_expires_at = time.monotonic() + max(int(data.get("expires_in", 0)) - 60, 0)
        return self._token

    async def _api(self, method: str, path: str, *, payload: Any = None, request_id: Optional[str] = None) -> httpx.Response:
        token = await self._access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return await self._send(method, f"{self.api_base}{path}", json=payload, headers=headers)

    @staticmethod
    def _body(resp: httpx.Response) -> dict[str, Any]:
        """错误响应体可能是网关返回的 HTML 或空串，解析失败按空对象处理"""
        if not resp.content:
            return {}
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _error(self, resp: httpx.Response) -> PaymentProviderError:
        body = self._body(resp)
        logger.warning(
            "paypal_api_error",
            http_status=resp.status_code,
            paypal_name=body.get("name"),
            debug_id=body.get("debug_id"),
        )
        return PaymentProviderError(provider=self.provider, provider_code=body.get("name") or str(resp.status_code))

    async def create_intent(self, req: CreateIntent) -> IntentResult:
        self._check_credentials()
        unit: dict[str, Any] = {
            "reference_id": req.reference,
            "amount": {"currency_code": req.currency, "value": _money(req.amount)},
        }
        if req.description:
            unit["description"] = req.description[:127]
        if req.items:
            item_total = sum((i.unit_price * i.quantity for i in req.items), Decimal("0"))
            # PayPal 要求 breakdown 与总额一致；费用/折扣不在行项目中，仅在一致时回显行项目
            if Decimal(item_total).quantize(Decimal("0.01")) == Decimal(req.amount).quantize(Decimal("0.01")):
                unit["amount"]["breakdown"] = {
                    "item_total": {"currency_code": req.currency, "value": _money(item_total)}
                }
                unit["items"] = [
                    {
                        "name": (i.name or f"Product {i.product_id}")[:127],
                        "sku": str(i.product_id),
                        "quantity": str(i.quantity),
                        "unit_amount": {"currency_code": req.currency, "value": _money(i.unit_price)},
                    }
                    for i in req.items
                ]
        payload = {
            "intent": "CAPTURE",
            "purchase_units": [unit],
            "application_context": {
                "return_url": settings.checkout.return_url,
                "cancel_url": settings.checkout.cancel_url,
                "user_action": "PAY_NOW",
            },
        }
        resp = await self._api("POST", "/v2/checkout/orders", payload=payload, request_id=req.idempotency_key)
        if resp.status_code not in (200, 201):
            raise self._error(resp)
        data = resp.json()
        approve = next((link["href"] for link in data.get("links", []) if link.get("rel") in ("approve", "payer-action")), None)
        self._log("payment_intent_created", provider_ref=data["id"], status=data.get("status"))
        return IntentResult(
            provider=self.provider,
            provider_ref=str(data["id"]),
            status=self._map_status(data.get("status")),
            client_params={"order_id": data["id"], "approve_url": approve},
        )

    def _to_capture(self, data: dict[str, Any], provider_ref: str) -> CaptureResult:
        status = self._map_status(data.get("status"))
        if status != "PAID":
            raise PaymentNotCompletedError(self.provider, provider_ref, status=data.get("status"))
        payer = data.get("payer") or {}
        unit = (data.get("purchase_units") or [{}])[0]
        captures = ((unit.get("payments") or {}).get("captures")) or []
        capture = captures[0] if captures else {}
        amount = capture.get("amount") or unit.get("amount") or {}
        items = []
        for item in unit.get("items") or []:
            sku = item.get("sku")
            if sku and str(sku).isdigit():
                items.append(
                    GatewayLineItem(
                        product_id=int(sku),
                        name=item.get("name") or "",
                        unit_price=Decimal(str((item.get("unit_amount") or {}).get("value", "0"))),
                        quantity=int(item.get("quantity") or 1),
                    )
                )
        return CaptureResult(
            provider=self.provider,
            provider_ref=provider_ref,
            status="PAID",
            payer_id=payer.get("payer_id"),
            payer_email=payer.get("email_address"),
            amount=Decimal(str(amount["value"])) if amount.get("value") else None,
            currency=amount.get("currency_code"),
            captured_at=_parse_time(capture.get("create_time") or data.get("update_time")),
            capture_id=capture.get("id"),
            items=items,
        )

    async def _get_order(self, provider_ref: str) -> httpx.Response:
        return await self._api("GET", f"/v2/checkout/orders/{provider_ref}")

    async def capture_intent(self, provider_ref: str) -> CaptureResult:
        self._check_credentials()
        resp = await self._api("POST", f"/v2/checkout/orders/{provider_ref}/capture", payload={})
        if resp.status_code in (200, 201):
            return self._to_capture(resp.json(), provider_ref)

        body = self._body(resp)
        issues = {d.get("issue") for d in body.get("details") or []}
        if "ORDER_ALREADY_CAPTURED" in issues:
            self._log("paypal_order_already_captured", provider_ref=provider_ref)
            current = await self._get_order(provider_ref)
            if current.status_code != 200:
                raise self._error(current)
            return self._to_capture(current.json(), provider_ref)
        if resp.status_code == 422 and issues & {"ORDER_NOT_APPROVED", "PAYER_ACTION_REQUIRED"}:
            raise PaymentNotCompletedError(self.provider, provider_ref, status=next(iter(issues)))
        raise self._error(resp)

    async def query_intent(self, provider_ref: str) -> QueryResult:
        self._check_credentials()
        resp = await self._get_order(provider_ref)
        if resp.status_code == 404:
            return QueryResult(provider=self.provider, provider_ref=provider_ref, status="PENDING")
        if resp.status_code != 200:
            raise self._error(resp)
        data = resp.json()
        return QueryResult(
            provider=self.provider,
            provider_ref=provider_ref,
            status=self._map_status(data.get("status")),
            provider_status=data.get("status"),
        )

    async def refund(self, req: RefundRequest) -> RefundResult:
        self._check_credentials()
        payload: dict[str, Any] = {}
        if req.amount is not None:
            payload["amount"] = {"currency_code": req.currency, "value": _money(req.amount)}
        if req.reason:
            payload["note_to_payer"] = req.reason[:255]
        resp = await self._api(
            "POST", f"/v2/payments/captures/{req.ref}/refund", payload=payload, request_id=req.idempotency_key
        )
        if resp.status_code not in (200, 201):
            body = self._body(resp)
            reason = body.get("message") or body.get("name") or f"HTTP {resp.status_code}"
            logger.warning("paypal_refund_failed", ref=req.ref, http_status=resp.status_code)
            raise RefundFailedError(self.provider, reason)
        data = resp.json()
        return RefundResult(
            refund_id=str(data.get("id")),
            status=str(data.get("status") or ""),
            provider=self.provider,
            provider_ref=req.ref,
        )

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        self._check_credentials()
        webhook_id = payment_settings.paypal.webhook_id
        if not webhook_id:
            raise PaymentSignatureError("Webhook id is not configured", provider=self.provider)
        lowered = {k.lower(): v for k, v in headers.items()}
        missing = [h for h in WEBHOOK_HEADERS.values() if not lowered.get(h)]
        if missing:
            raise PaymentSignatureError("Missing PayPal transmission headers", provider=self.provider, details={"missing": missing})
        try:
            event = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise PaymentSignatureError("Malformed webhook payload", provider=self.provider) from exc

        verify = {key: lowered[h] for key, h in WEBHOOK_HEADERS.items()}
        verify.update(webhook_id=webhook_id, webhook_event=event)
        resp = await self._api("POST", "/v1/notifications/verify-webhook-signature", payload=verify)
        if resp.status_code != 200 or resp.json().get("verification_status") != "SUCCESS":
            raise PaymentSignatureError("Invalid webhook signature", provider=self.provider)

        event_type = str(event.get("event_type"))
        resource = event.get("resource") or {}
        provider_ref: Optional[str] = None
        status: Optional[str] = None
        if event_type == "CHECKOUT.ORDER.COMPLETED":
            provider_ref, status = resource.get("id"), "PAID"
        elif event_type in ("PAYMENT.CAPTURE.COMPLETED", "PAYMENT.CAPTURE.DENIED"):
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            provider_ref = related.get("order_id")
            status = "PAID" if event_type == "PAYMENT.CAPTURE.COMPLETED" else "FAILED"
        return WebhookEvent(
            id=str(event.get("id")),
            type=event_type,
            provider=self.provider,
            data=resource,
            provider_ref=provider_ref,
            status=status,
            raw_headers=headers,
            raw_body=body,
        )
