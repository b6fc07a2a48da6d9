"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- SDK calls are blocking; they run in a worker thread via ``asyncio.to_thread``.
- The API key is passed per request (``api_key=``) so no module-level state is
  mutated. Idempotency keys are supplied via the ``idempotency_key`` kwarg.
- Webhook verification uses ``stripe.Webhook.construct_event`` with the
  ``Stripe-Signature`` header.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

import stripe

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
from domain.common.exceptions import (
    PaymentNotCompletedError,
    RefundFailedError,
)
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentSignatureError,
)


logger = get_logger(__name__)

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}

WEBHOOK_STATUS_BY_TYPE = {
    "payment_intent.succeeded": "PAID",
    "payment_intent.payment_failed": "FAILED",
    "payment_intent.canceled": "FAILED",
}


class StripeClient(BasePaymentClient):
    provider = "stripe"
    eager_order = True

    @staticmethod
    def _exponent(currency: str) -> int:
        return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2

    @classmethod
    def _to_minor(cls, amount: Decimal, currency: str) -> int:
        # Stripe expects amounts in the smallest currency unit
        return int((Decimal(amount) * (Decimal(10) ** cls._exponent(currency))).to_integral_value())

    @classmethod
    def _from_minor(cls, amount: int, currency: str) -> Decimal:
        exponent = cls._exponent(currency)
        return (Decimal(int(amount)) / (Decimal(10) ** exponent)).quantize(Decimal("0.01"))

    def _api_key(self) -> str:
        key = payment_settings.stripe.secret_key
        self._require_credentials(secret_key=key)
        return key  # type: ignore[return-value]

    async def _call(self, fn: Callable[..., Any], /, **kwargs) -> Any:
        """在线程中执行 SDK 调用；连接错误按配置重试，耗尽后视为网关不可用"""
        try:
            async for attempt in self._retrying((stripe.APIConnectionError,)):
                with attempt:
                    return await asyncio.to_thread(fn, **kwargs)
        except stripe.APIConnectionError as exc:
            raise self._unreachable(exc) from exc

    def _provider_error(self, exc: stripe.StripeError) -> PaymentProviderError:
        logger.warning(
            "stripe_api_error",
            error=type(exc).__name__,
            stripe_code=getattr(exc, "code", None),
            http_status=getattr(exc, "http_status", None),
        )
        return PaymentProviderError(provider=self.provider, provider_code=getattr(exc, "code", None))

    async def create_intent(self, req: CreateIntent) -> IntentResult:
        api_key = self._api_key()
        try:
            pi = await self._call(
                stripe.PaymentIntent.create,
                api_key=api_key,
                amount=self._to_minor(req.amount, req.currency),
                currency=req.currency.lower(),
                metadata={"reference": req.reference},
                description=req.description,
                automatic_payment_methods={"enabled": True},
                idempotency_key=req.idempotency_key,
            )
        except stripe.StripeError as exc:
            raise self._provider_error(exc) from exc
        self._log("payment_intent_created", provider_ref=pi["id"], status=pi["status"])
        return IntentResult(
            provider=self.provider,
            provider_ref=str(pi["id"]),
            status=self._map_status(pi["status"]),
            client_params={"client_secret": pi.get("client_secret")},
        )

    async def _retrieve(self, provider_ref: str):
        return await self._call(stripe.PaymentIntent.retrieve, id=provider_ref, api_key=self._api_key())

    async def capture_intent(self, provider_ref: str) -> CaptureResult:
        """PaymentIntent 由前端确认；这里读取其最终状态，非 succeeded 视为未完成"""
        try:
            pi = await self._retrieve(provider_ref)
        except stripe.StripeError as exc:
            raise self._provider_error(exc) from exc
        status = self._map_status(pi["status"])
        if status != "PAID":
            raise PaymentNotCompletedError(self.provider, provider_ref, status=str(pi["status"]))
        currency = str(pi.get("currency") or "sgd").upper()
        created = pi.get("created")
        return CaptureResult(
            provider=self.provider,
            provider_ref=str(pi["id"]),
            status="PAID",
            payer_id=pi.get("customer"),
            payer_email=pi.get("receipt_email"),
            amount=self._from_minor(pi.get("amount_received") or pi.get("amount") or 0, currency),
            currency=currency,
            captured_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
            capture_id=pi.get("latest_charge"),
        )

    async def query_intent(self, provider_ref: str) -> QueryResult:
        try:
            pi = await self._retrieve(provider_ref)
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "http_status", None) == 404:
                return QueryResult(provider=self.provider, provider_ref=provider_ref, status="PENDING")
            raise self._provider_error(exc) from exc
        except stripe.StripeError as exc:
            raise self._provider_error(exc) from exc
        return QueryResult(
            provider=self.provider,
            provider_ref=provider_ref,
            status=self._map_status(pi["status"]),
            provider_status=str(pi["status"]),
        )

    async def refund(self, req: RefundRequest) -> RefundResult:
        api_key = self._api_key()
        target = {"charge": req.ref} if req.ref.startswith("ch_") else {"payment_intent": req.ref}
        params: dict[str, Any] = {
            **target,
            "api_key": api_key,
            "idempotency_key": req.idempotency_key,
            "metadata": {"reason": req.reason or ""},
        }
        if req.amount is not None:
            params["amount"] = self._to_minor(req.amount, req.currency)
        try:
            refund = await self._call(stripe.Refund.create, **params)
        except stripe.StripeError as exc:
            logger.warning("stripe_refund_failed", ref=req.ref, stripe_code=getattr(exc, "code", None))
            raise RefundFailedError(self.provider, getattr(exc, "user_message", None) or str(exc)) from exc
        if refund.get("status") == "failed":
            raise RefundFailedError(self.provider, str(refund.get("failure_reason") or "failed"))
        return RefundResult(
            refund_id=str(refund["id"]),
            status=str(refund.get("status") or ""),
            provider=self.provider,
            provider_ref=req.ref,
        )

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        secret = payment_settings.stripe.webhook_secret
        if not secret:
            raise PaymentSignatureError("Webhook secret is not configured", provider=self.provider)
        sig = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            event = stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=secret,
                tolerance=payment_settings.webhook.tolerance_seconds,
            )
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise PaymentSignatureError("Invalid webhook signature", provider=self.provider) from exc

        event_type = str(event.get("type"))
        data = event.get("data", {}) or {}
        obj = data.get("object", {}) or {}
        return WebhookEvent(
            id=str(event.get("id")),
            type=event_type,
            provider=self.provider,
            data=data,
            provider_ref=obj.get("id") if event_type.startswith("payment_intent.") else None,
            status=WEBHOOK_STATUS_BY_TYPE.get(event_type),
            raw_headers=headers,
            raw_body=body,
        )
