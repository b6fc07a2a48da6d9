"""
订阅应用服务：查询（请求边界处 reconcile）、PayPal 付费开通、取消
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.checkout import PendingIntent
from application.dtos.payments import CreateIntent
from application.ports.payment_gateway import PaymentGateway
from application.ports.pending_registry import PendingPaymentRegistry
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import PendingIntentNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.subscription.entity import Subscription, SubscriptionPlan
from domain.subscription.service import SubscriptionLedger


logger = get_logger(__name__)

SUBSCRIPTION_PROVIDER = "paypal"
SUBSCRIPTION_SLOT = f"{SUBSCRIPTION_PROVIDER}:subscription"


class SubscriptionService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        registry: PendingPaymentRegistry,
        gateway_factory: Callable[[str], PaymentGateway],
    ):
        self._uow_factory = uow_factory
        self._registry = registry
        self._gateway_factory = gateway_factory

    def _ledger(self, uow: AbstractUnitOfWork) -> SubscriptionLedger:
        return SubscriptionLedger(uow.subscriptions, period_months=settings.checkout.subscription_period_months)

    async def current(self, account_id: int, now: Optional[datetime] = None) -> tuple[Optional[Subscription], bool]:
        """返回 (当前订阅, 是否有效)；读取前显式 reconcile 一次"""
        now = now or datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            ledger = self._ledger(uow)
            row = await ledger.reconcile(await ledger.get_current(account_id), now)
            return row, ledger.is_active(row, now)

    async def start_checkout(self, account_id: int, plan: SubscriptionPlan) -> tuple[PendingIntent, dict]:
        price = settings.checkout.plan_prices[plan.value]
        gateway = self._gateway_factory(SUBSCRIPTION_PROVIDER)
        try:
            intent = await gateway.create_intent(
                CreateIntent(
                    amount=price,
                    currency=settings.checkout.currency,
                    reference=f"SUB-{account_id}-{plan.value}-{int(datetime.now(timezone.utc).timestamp())}",
                    description=f"{plan.value} membership",
                )
            )
        finally:
            await gateway.aclose()
        pending = PendingIntent(
            account_id=account_id,
            provider=SUBSCRIPTION_PROVIDER,
            provider_ref=intent.provider_ref,
            purpose="subscription",
            plan=plan.value,
            total=price,
            currency=settings.checkout.currency,
        )
        await self._registry.open(pending, slot=SUBSCRIPTION_SLOT)
        return pending, intent.client_params

    async def capture(self, account_id: int, provider_ref: str) -> Subscription:
        pending = await self._registry.resolve(account_id, SUBSCRIPTION_SLOT, provider_ref)
        if pending is None or not pending.plan:
            raise PendingIntentNotFoundException(SUBSCRIPTION_PROVIDER)
        gateway = self._gateway_factory(SUBSCRIPTION_PROVIDER)
        try:
            capture = await gateway.capture_intent(provider_ref)
        finally:
            await gateway.aclose()
        async with self._uow_factory() as uow:
            row = await self._ledger(uow).subscribe(
                account_id,
                SubscriptionPlan.parse(pending.plan),
                payment_reference=capture.provider_ref,
                now=capture.captured_at,
            )
        await self._registry.close(account_id, SUBSCRIPTION_SLOT, provider_ref)
        logger.info("subscription_activated", account_id=account_id, plan=row.plan.value, end_date=row.end_date.isoformat())
        return row

    async def cancel(self, account_id: int, *, at_period_end: bool = True) -> Subscription:
        async with self._uow_factory() as uow:
            ledger = self._ledger(uow)
            if at_period_end:
                row = await ledger.cancel_at_period_end(account_id)
            else:
                row = await ledger.cancel_now(account_id)
        logger.info("subscription_cancelled", account_id=account_id, at_period_end=at_period_end)
        return row
