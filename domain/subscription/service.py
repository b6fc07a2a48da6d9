"""
订阅领域服务 - 订阅账本

职责：
1. 读取当前订阅（纯读取，无副作用）
2. reconcile：显式地续期或过期，并持久化
3. 订阅 / 立即取消 / 周期末取消
"""
from datetime import datetime, timezone
from typing import Optional

from .entity import (
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    add_months,
)
from .repository import SubscriptionRepository
from domain.common.exceptions import SubscriptionNotFoundException


class SubscriptionLedger:

    def __init__(self, repository: SubscriptionRepository, *, period_months: int = 1):
        self.repository = repository
        self.period_months = period_months

    async def get_current(self, account_id: int) -> Optional[Subscription]:
        return await self.repository.get_current(account_id)

    async def reconcile(self, row: Optional[Subscription], now: Optional[datetime] = None) -> Optional[Subscription]:
        if row is None:
            return None
        now = now or datetime.now(timezone.utc)
        if row.reconcile(now, self.period_months):
            row = await self.repository.update(row)
        return row

    @staticmethod
    def is_active(row: Optional[Subscription], now: Optional[datetime] = None) -> bool:
        if row is None:
            return False
        return row.is_active(now or datetime.now(timezone.utc))

    async def active_plan(self, account_id: int, now: Optional[datetime] = None) -> Optional[SubscriptionPlan]:
        """reconcile 后返回当前有效的套餐；无有效订阅返回 None"""
        now = now or datetime.now(timezone.utc)
        row = await self.reconcile(await self.get_current(account_id), now)
        return row.plan if self.is_active(row, now) else None

    async def subscribe(
        self,
        account_id: int,
        plan: SubscriptionPlan,
        *,
        payment_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """开通或替换当前订阅；仍在有效期内时从原到期日顺延"""
        now = now or datetime.now(timezone.utc)
        current = await self.reconcile(await self.get_current(account_id), now)
        if current is not None and current.payment_reference and current.payment_reference == payment_reference:
            return current
        start = now
        if current is not None and current.is_active(now) and current.status == SubscriptionStatus.ACTIVE:
            start = current.end_date
        row = Subscription(
            id=None,
            account_id=account_id,
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            start_date=now,
            end_date=add_months(start, self.period_months),
            auto_renew=True,
            cancel_at_period_end=False,
            payment_reference=payment_reference,
        )
        return await self.repository.add(row)

    async def cancel_now(self, account_id: int, now: Optional[datetime] = None) -> Subscription:
        now = now or datetime.now(timezone.utc)
        row = await self.get_current(account_id)
        if row is None:
            raise SubscriptionNotFoundException(account_id)
        row.cancel_now(now)
        return await self.repository.update(row)

    async def cancel_at_period_end(self, account_id: int) -> Subscription:
        row = await self.get_current(account_id)
        if row is None:
            raise SubscriptionNotFoundException(account_id)
        row.cancel_at_end_of_period()
        return await self.repository.update(row)
