"""
Promo rules.

Two tiers: a code from the administrable promo store, then the legacy SAVE10
rule. Evaluation never raises; an unknown or ineligible code yields a result
with ``applied=False`` and a message for the shopper.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.common.money import ZERO, money
from .repository import PromoCode


LEGACY_CODE = "SAVE10"
LEGACY_RATE = Decimal("0.10")
LEGACY_CAP = Decimal("6.00")
LEGACY_MIN_SPEND = Decimal("20.00")


@dataclass(frozen=True)
class PromoResult:
    applied: bool
    discount: Decimal
    message: str
    code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "discount": str(self.discount),
            "message": self.message,
            "code": self.code,
        }


NOT_APPLIED = PromoResult(applied=False, discount=ZERO, message="")


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def evaluate_store_promo(record: PromoCode, subtotal: Decimal, now: datetime) -> Optional[PromoResult]:
    """门店优惠码：启用且未过期才命中，折扣百分比限制在 0..100"""
    if not record.active:
        return None
    expires_at = record.expires_at
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=now.tzinfo)
        if expires_at <= now:
            return None
    pct = min(max(Decimal(str(record.percent_off)), ZERO), Decimal("100"))
    discount = money(money(subtotal) * pct / 100)
    return PromoResult(
        applied=discount > 0,
        discount=discount,
        message=f"Promo applied: {record.code} ({pct.normalize():f}% off)",
        code=record.code,
    )


def evaluate_legacy_promo(code: str, subtotal: Decimal) -> PromoResult:
    if code != LEGACY_CODE:
        return PromoResult(applied=False, discount=ZERO, message="Promo code not recognized", code=code)
    subtotal = money(subtotal)
    if subtotal < LEGACY_MIN_SPEND:
        return PromoResult(applied=False, discount=ZERO, message="Minimum spend $20 required", code=code)
    discount = min(money(subtotal * LEGACY_RATE), LEGACY_CAP)
    return PromoResult(applied=True, discount=discount, message=f"Promo applied: {LEGACY_CODE}", code=code)


def evaluate_promo(
    code: Optional[str],
    subtotal: Decimal,
    record: Optional[PromoCode],
    now: datetime,
) -> PromoResult:
    normalized = normalize_code(code)
    if not normalized:
        return NOT_APPLIED
    if record is not None:
        result = evaluate_store_promo(record, subtotal, now)
        if result is not None:
            return result
    return evaluate_legacy_promo(normalized, subtotal)
