from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from application.dtos.payments import CaptureResult, CreateIntent, IntentResult
from application.services.benefit_service import BenefitService
from application.services.subscription_service import SUBSCRIPTION_SLOT, SubscriptionService
from domain.common.exceptions import PendingIntentNotFoundException, SubscriptionNotFoundException
from domain.subscription.entity import (
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    add_months,
)


ACCOUNT = 51
NOW = datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc)


class PayPalStub:
    provider = "paypal"
    eager_order = False

    def __init__(self):
        self.created: list[CreateIntent] = []

    async def create_intent(self, req: CreateIntent) -> IntentResult:
        self.created.append(req)
        return IntentResult(provider=self.provider, provider_ref=f"SUB-REF-{len(self.created)}", client_params={})

    async def capture_intent(self, provider_ref: str) -> CaptureResult:
        return CaptureResult(provider=self.provider, provider_ref=provider_ref, status="PAID")

    async def aclose(self) -> None:
        return None


def test_add_months_clamps_to_month_end():
    assert add_months(NOW, 1).date().isoformat() == "2026-02-28"
    assert add_months(NOW, 12).date().isoformat() == "2027-01-31"


def test_reconcile_renews_or_expires():
    row = Subscription(
        id=1,
        account_id=ACCOUNT,
        plan=SubscriptionPlan.BASIC,
        status=SubscriptionStatus.ACTIVE,
        start_date=NOW,
        end_date=NOW,
    )
    later = NOW + timedelta(days=70)
    assert row.reconcile(later) is True
    assert row.end_date >= later
    assert row.reconcile(later) is False

    row.cancel_at_end_of_period()
    assert row.reconcile(row.end_date + timedelta(seconds=1)) is True
    assert row.status == SubscriptionStatus.EXPIRED
    assert row.is_active(later + timedelta(days=60)) is False


def test_cancelled_subscription_stays_active_until_period_end():
    row = Subscription(
        id=1,
        account_id=ACCOUNT,
        plan=SubscriptionPlan.PREMIUM,
        status=SubscriptionStatus.CANCELLED,
        start_date=NOW,
        end_date=NOW + timedelta(days=3),
        auto_renew=False,
    )
    assert row.is_active(NOW + timedelta(days=1)) is True
    assert row.is_active(NOW + timedelta(days=3)) is False


@pytest.mark.asyncio
async def test_paypal_subscription_checkout(uow_factory, registry):
    gateway = PayPalStub()
    service = SubscriptionService(uow_factory, registry, lambda provider: gateway)

    pending, _ = await service.start_checkout(ACCOUNT, SubscriptionPlan.PREMIUM)
    assert pending.purpose == "subscription"
    assert gateway.created[0].amount == Decimal("9.99")
    # 订阅意图与订单意图互不覆盖
    assert await registry.current(ACCOUNT, "paypal") is None
    assert await registry.current(ACCOUNT, SUBSCRIPTION_SLOT) is not None

    row = await service.capture(ACCOUNT, pending.provider_ref)
    assert row.plan == SubscriptionPlan.PREMIUM
    assert row.status == SubscriptionStatus.ACTIVE
    assert await registry.current(ACCOUNT, SUBSCRIPTION_SLOT) is None

    with pytest.raises(PendingIntentNotFoundException):
        await service.capture(ACCOUNT, pending.provider_ref)

    current, active = await service.current(ACCOUNT)
    assert active is True and current.id == row.id
    assert await BenefitService(uow_factory).active_plan(ACCOUNT) == SubscriptionPlan.PREMIUM


@pytest.mark.asyncio
async def test_cancel_now_drops_benefits(uow_factory, registry, subscribe):
    service = SubscriptionService(uow_factory, registry, lambda provider: PayPalStub())

    with pytest.raises(SubscriptionNotFoundException):
        await service.cancel(ACCOUNT)

    await subscribe(ACCOUNT, SubscriptionPlan.BASIC)
    row = await service.cancel(ACCOUNT, at_period_end=True)
    assert row.cancel_at_period_end is True and row.auto_renew is False
    assert (await service.current(ACCOUNT))[1] is True

    await service.cancel(ACCOUNT, at_period_end=False)
    assert (await service.current(ACCOUNT))[1] is False
    assert await BenefitService(uow_factory).active_plan(ACCOUNT) is None
