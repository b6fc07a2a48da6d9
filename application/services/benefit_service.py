"""
会员权益与优惠码应用服务

BenefitService 通过订阅账本读取（并 reconcile）当前套餐后计算配送费与折扣；
PromoEvaluator 先查优惠码库，查询失败时记录日志并回退到内置规则，从不抛异常。
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from core.config import settings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.pricing.benefits import BenefitQuote, compute_benefits
from domain.pricing.promo import NOT_APPLIED, PromoResult, evaluate_promo, normalize_code
from domain.pricing.repository import PromoCode
from domain.subscription.entity import SubscriptionPlan
from domain.subscription.service import SubscriptionLedger


logger = get_logger(__name__)


class BenefitService:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def active_plan(self, account_id: int, now: Optional[datetime] = None) -> Optional[SubscriptionPlan]:
        async with self._uow_factory() as uow:
            ledger = SubscriptionLedger(
                uow.subscriptions, period_months=settings.checkout.subscription_period_months
            )
            return await ledger.active_plan(account_id, now)

    async def compute(self, account_id: int, base: Decimal, now: Optional[datetime] = None) -> BenefitQuote:
        plan = await self.active_plan(account_id, now)
        return compute_benefits(base, plan)


class PromoEvaluator:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def _lookup(self, code: str) -> Optional[PromoCode]:
        try:
            async with self._uow_factory(readonly=True) as uow:
                return await uow.promos.get_by_code(code)
        except Exception as exc:
            logger.warning("promo_lookup_failed", promo_code=code, error=str(exc))
            return None

    async def evaluate(self, code: Optional[str], subtotal: Decimal, now: Optional[datetime] = None) -> PromoResult:
        normalized = normalize_code(code)
        if not normalized:
            return NOT_APPLIED
        record = await self._lookup(normalized)
        result = evaluate_promo(normalized, subtotal, record, now or datetime.now(timezone.utc))
        logger.info(
            "promo_evaluated",
            promo_code=normalized,
            applied=result.applied,
            discount=str(result.discount),
        )
        return result
