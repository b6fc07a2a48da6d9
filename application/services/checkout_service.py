"""
结账编排应用服务

start  : 报价 -> 网关创建意图 -> (直接扣款流程) 写入 PENDING 订单 -> 登记待确认意图
capture: 重定向返回时按精确引用取回快照 -> 网关确认 -> finalize
status : 有界轮询网关状态，成功后 finalize
webhook: 已验签事件 -> 仅对已知订单 finalize（失败事件置为 FAILED）

三条确认路径都汇合到 OrderMaterializer.finalize，先到者创建/更新订单，其余为 DUPLICATE_NOOP。
"""
from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_fixed

from application.dtos.checkout import (
    CartLine,
    CheckoutStatus,
    DeliveryRequest,
    FinalizeResult,
    PendingIntent,
    Quote,
)
from application.dtos.payments import (
    CaptureResult,
    CreateIntent,
    GatewayLineItem,
    QueryResult,
    WebhookEvent,
)
from application.ports.payment_gateway import PaymentGateway
from application.ports.pending_registry import PendingPaymentRegistry
from application.services.benefit_service import BenefitService, PromoEvaluator
from application.services.order_materializer import OrderMaterializer, PaymentConfirmation
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import EmptyCartError, InvalidPromoError, PendingIntentNotFoundException
from domain.common.money import ZERO, money
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import LineItem, PaymentMethod
from domain.pricing.benefits import MINIMUM_TOTAL
from domain.pricing.delivery import plan_delivery


logger = get_logger(__name__)


def _is_pending(result: QueryResult) -> bool:
    return result.status == "PENDING"


def _last_result(retry_state):
    return retry_state.outcome.result()


class CheckoutService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        registry: PendingPaymentRegistry,
        gateway_factory: Callable[[str], PaymentGateway],
        *,
        materializer: Optional[OrderMaterializer] = None,
        benefits: Optional[BenefitService] = None,
        promos: Optional[PromoEvaluator] = None,
    ):
        self._uow_factory = uow_factory
        self._registry = registry
        self._gateway_factory = gateway_factory
        self._materializer = materializer or OrderMaterializer(uow_factory)
        self._benefits = benefits or BenefitService(uow_factory)
        self._promos = promos or PromoEvaluator(uow_factory)

    # ---- 报价 ----

    async def quote(
        self,
        account_id: int,
        *,
        promo_code: Optional[str] = None,
        delivery: Optional[DeliveryRequest] = None,
        strict: bool = False,
        now: Optional[datetime] = None,
    ) -> Quote:
        """strict=True 时，调用方坚持使用但未生效的优惠码会被拒绝"""
        now = now or datetime.now(timezone.utc)
        delivery = delivery or DeliveryRequest()
        async with self._uow_factory(readonly=True) as uow:
            cart = await uow.carts.get_cart(account_id)
        if cart.is_empty:
            raise EmptyCartError(account_id, "")

        subtotal = cart.subtotal()
        promo = await self._promos.evaluate(promo_code, subtotal, now)
        if strict and promo_code and promo_code.strip() and not promo.applied:
            raise InvalidPromoError(promo_code, promo.message)
        benefit = await self._benefits.compute(account_id, subtotal, now)
        total = max(MINIMUM_TOTAL, money(benefit.total - promo.discount))
        plan = plan_delivery(delivery.delivery_type, total, delivery.scheduled_at, now)
        return Quote(
            items=[CartLine.from_line_item(i) for i in cart.line_items()],
            subtotal=subtotal,
            delivery_fee=benefit.delivery_fee,
            benefit_discount=benefit.discount,
            plan=benefit.plan,
            promo_code=promo.code if promo.applied else None,
            promo_discount=promo.discount if promo.applied else ZERO,
            promo_message=promo.message,
            total=total,
            currency=settings.checkout.currency,
            delivery_type=plan.delivery_type,
            scheduled_at=plan.scheduled_at,
            eta_min=plan.eta_min,
            eta_max=plan.eta_max,
        )

    # ---- 创建意图 ----

    async def start(
        self,
        account_id: int,
        provider: str,
        *,
        promo_code: Optional[str] = None,
        delivery: Optional[DeliveryRequest] = None,
    ) -> tuple[PendingIntent, dict]:
        method = PaymentMethod.from_provider(provider)
        quote = await self.quote(account_id, promo_code=promo_code, delivery=delivery, strict=True)
        reference = f"ORD-{account_id}-{uuid.uuid4().hex[:16]}"
        idempotency_key = hashlib.sha256(f"intent|{account_id}|{method.value}|{reference}".encode("utf-8")).hexdigest()

        gateway = self._gateway_factory(method.provider)
        try:
            intent = await gateway.create_intent(
                CreateIntent(
                    amount=quote.total,
                    currency=quote.currency,
                    reference=reference,
                    items=[GatewayLineItem(**line.model_dump()) for line in quote.items],
                    idempotency_key=idempotency_key,
                )
            )
            eager = bool(getattr(gateway, "eager_order", False))
        finally:
            await gateway.aclose()

        pending = PendingIntent(
            account_id=account_id,
            provider=method.provider,
            provider_ref=intent.provider_ref,
            items=quote.items,
            subtotal=quote.subtotal,
            delivery_fee=quote.delivery_fee,
            benefit_discount=quote.benefit_discount,
            promo_code=quote.promo_code,
            promo_discount=quote.promo_discount,
            total=quote.total,
            currency=quote.currency,
            delivery_type=quote.delivery_type,
            scheduled_at=quote.scheduled_at,
            eta_min=quote.eta_min,
            eta_max=quote.eta_max,
        )
        if eager:
            pending.order_id = await self._materializer.open_pending(
                account_id=account_id,
                method=method,
                reference=intent.provider_ref,
                items=pending.line_items(),
                total=quote.total,
                currency=quote.currency,
                meta=pending.delivery_meta(),
            )
        await self._registry.open(pending)
        logger.info(
            "checkout_started",
            account_id=account_id,
            provider=method.provider,
            provider_ref=intent.provider_ref,
            total=str(quote.total),
            order_id=pending.order_id,
        )
        return pending, intent.client_params

    # ---- 确认 ----

    async def _finalize(self, pending: PendingIntent, capture: CaptureResult) -> FinalizeResult:
        method = PaymentMethod.from_provider(pending.provider)
        result = await self._materializer.finalize(
            PaymentConfirmation(
                account_id=pending.account_id,
                method=method,
                reference=pending.provider_ref,
                amount=capture.amount,
                currency=capture.currency or pending.currency,
                payer_id=capture.payer_id,
                payer_email=capture.payer_email,
                capture_id=capture.capture_id,
                paid_at=capture.captured_at,
                snapshot_items=pending.line_items(),
                snapshot_total=pending.total,
                echo_items=[
                    LineItem(product_id=i.product_id, name=i.name, unit_price=i.unit_price, quantity=i.quantity)
                    for i in capture.items
                ],
                meta=pending.delivery_meta(),
            )
        )
        await self._registry.close(pending.account_id, pending.provider, pending.provider_ref)
        return result

    async def _existing_settled(self, account_id: int, method: PaymentMethod, provider_ref: str) -> Optional[CheckoutStatus]:
        """意图已被其他路径消费（注册表已关闭）时，按引用返回已存在的订单"""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_payment_reference(method, provider_ref)
        if order is None or order.account_id != account_id or not order.is_settled:
            return None
        return CheckoutStatus(provider=method.provider, provider_ref=provider_ref, status="PAID", order_id=order.id)

    async def capture(self, account_id: int, provider: str, provider_ref: str) -> CheckoutStatus:
        method = PaymentMethod.from_provider(provider)
        pending = await self._registry.resolve(account_id, method.provider, provider_ref)
        if pending is None:
            existing = await self._existing_settled(account_id, method, provider_ref)
            if existing is not None:
                return existing
            raise PendingIntentNotFoundException(method.provider)

        gateway = self._gateway_factory(method.provider)
        try:
            capture = await gateway.capture_intent(provider_ref)
        finally:
            await gateway.aclose()
        result = await self._finalize(pending, capture)
        return CheckoutStatus(
            provider=method.provider,
            provider_ref=provider_ref,
            status="PAID",
            order_id=result.order_id,
            outcome=result.outcome,
        )

    async def poll_intent(
        self,
        gateway: PaymentGateway,
        provider_ref: str,
        *,
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> QueryResult:
        """有界轮询：最多 attempts 次，仍为 PENDING 时返回最后一次结果"""
        attempts = attempts or settings.checkout.poll_attempts
        backoff = settings.checkout.poll_backoff_seconds if backoff_seconds is None else backoff_seconds
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(attempts, 1)),
            wait=wait_fixed(backoff),
            retry=retry_if_result(_is_pending),
            retry_error_callback=_last_result,
        ):
            with attempt:
                result = await gateway.query_intent(provider_ref)
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
        return result

    async def status(self, account_id: int, provider: str, provider_ref: Optional[str] = None) -> CheckoutStatus:
        method = PaymentMethod.from_provider(provider)
        if provider_ref:
            pending = await self._registry.resolve(account_id, method.provider, provider_ref)
        else:
            pending = await self._registry.current(account_id, method.provider)
        if pending is None:
            if provider_ref:
                existing = await self._existing_settled(account_id, method, provider_ref)
                if existing is not None:
                    return existing
            raise PendingIntentNotFoundException(method.provider)

        gateway = self._gateway_factory(method.provider)
        try:
            result = await self.poll_intent(gateway, pending.provider_ref)
            if result.status != "PAID":
                if result.status == "FAILED":
                    await self._registry.close(account_id, method.provider, pending.provider_ref)
                    logger.info("checkout_payment_failed", account_id=account_id, provider=method.provider, provider_ref=pending.provider_ref)
                    if pending.order_id is not None:
                        await self._fail_order(pending.order_id, provider_ref=pending.provider_ref)
                return CheckoutStatus(
                    provider=method.provider,
                    provider_ref=pending.provider_ref,
                    status=result.status,
                    order_id=pending.order_id,
                )
            capture = await gateway.capture_intent(pending.provider_ref)
        finally:
            await gateway.aclose()
        finalized = await self._finalize(pending, capture)
        return CheckoutStatus(
            provider=method.provider,
            provider_ref=pending.provider_ref,
            status="PAID",
            order_id=finalized.order_id,
            outcome=finalized.outcome,
        )

    async def _fail_order(self, order_id: int, *, provider_ref: str) -> bool:
        async with self._uow_factory() as uow:
            failed = await uow.orders.mark_failed_if_pending(order_id, datetime.now(timezone.utc))
        if failed:
            logger.info("order_payment_failed", order_id=order_id, provider_ref=provider_ref)
        return failed

    async def handle_webhook(self, event: WebhookEvent) -> Optional[FinalizeResult]:
        """支付成功事件 finalize 已知订单；失败事件把仍未支付的已知订单置为 FAILED"""
        if event.status == "FAILED" and event.provider_ref:
            method = PaymentMethod.from_provider(event.provider)
            async with self._uow_factory(readonly=True) as uow:
                order = await uow.orders.get_by_payment_reference(method, event.provider_ref)
            if order is not None:
                await self._fail_order(order.id, provider_ref=event.provider_ref)
            return None
        if event.status != "PAID" or not event.provider_ref:
            logger.info("webhook_event_ignored", provider=event.provider, event_type=event.type, event_id=event.id)
            return None
        method = PaymentMethod.from_provider(event.provider)
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_payment_reference(method, event.provider_ref)
        if order is None:
            logger.info(
                "webhook_order_unknown",
                provider=event.provider,
                provider_ref=event.provider_ref,
                event_id=event.id,
            )
            return None

        obj = event.data.get("object") if isinstance(event.data.get("object"), dict) else {}
        amount_minor = obj.get("amount_received")
        result = await self._materializer.finalize(
            PaymentConfirmation(
                account_id=order.account_id,
                method=method,
                reference=event.provider_ref,
                amount=(Decimal(int(amount_minor)) / 100) if amount_minor is not None else None,
                currency=str(obj.get("currency") or order.currency).upper(),
                payer_email=obj.get("receipt_email"),
                capture_id=obj.get("latest_charge"),
                snapshot_items=order.items,
                snapshot_total=order.total_amount,
            )
        )
        await self._registry.close(order.account_id, method.provider, event.provider_ref)
        logger.info(
            "webhook_order_finalized",
            provider=event.provider,
            event_id=event.id,
            order_id=result.order_id,
            outcome=result.outcome.value,
        )
        return result
