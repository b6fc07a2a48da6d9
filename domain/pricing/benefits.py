"""
Benefit calculator: delivery fee waiver and fixed member discount.

Pure function of the cart base amount and the active plan. The 0.50 floor
keeps the charged total above zero so no gateway receives a zero-amount intent.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from domain.common.money import ZERO, money
from domain.subscription.entity import SubscriptionPlan


DEFAULT_DELIVERY_FEE = Decimal("2.00")
MINIMUM_TOTAL = Decimal("0.50")


@dataclass(frozen=True)
class BenefitRule:
    fee_waiver_threshold: Decimal
    discount: Decimal


NO_PLAN_RULE = BenefitRule(fee_waiver_threshold=Decimal("10.00"), discount=ZERO)

BENEFIT_RULES: dict[SubscriptionPlan, BenefitRule] = {
    SubscriptionPlan.BASIC: BenefitRule(fee_waiver_threshold=Decimal("10.00"), discount=ZERO),
    SubscriptionPlan.PREMIUM: BenefitRule(fee_waiver_threshold=Decimal("5.00"), discount=Decimal("1.50")),
}


@dataclass(frozen=True)
class BenefitQuote:
    base: Decimal
    delivery_fee: Decimal
    discount: Decimal
    plan: str
    total: Decimal

    def to_dict(self) -> dict:
        return {
            "base": str(self.base),
            "delivery_fee": str(self.delivery_fee),
            "discount": str(self.discount),
            "plan": self.plan,
            "total": str(self.total),
        }


def compute_benefits(
    base: Decimal,
    plan: Optional[SubscriptionPlan],
    *,
    delivery_fee: Decimal = DEFAULT_DELIVERY_FEE,
) -> BenefitQuote:
    base = money(base)
    rule = BENEFIT_RULES.get(plan, NO_PLAN_RULE) if plan else NO_PLAN_RULE
    fee = ZERO if base >= rule.fee_waiver_threshold else money(delivery_fee)
    discount = money(rule.discount)
    total = max(MINIMUM_TOTAL, money(base + fee - discount))
    return BenefitQuote(
        base=base,
        delivery_fee=fee,
        discount=discount,
        plan=plan.value if plan else "NONE",
        total=total,
    )
