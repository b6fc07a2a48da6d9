from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import InvalidScheduleError
from domain.order.entity import DeliveryType
from domain.pricing.benefits import compute_benefits
from domain.pricing.delivery import plan_delivery
from domain.pricing.promo import evaluate_promo
from domain.pricing.repository import PromoCode
from domain.subscription.entity import SubscriptionPlan


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_premium_waives_fee_and_applies_discount():
    quote = compute_benefits(Decimal("12.00"), SubscriptionPlan.PREMIUM)
    assert quote.delivery_fee == Decimal("0.00")
    assert quote.discount == Decimal("1.50")
    assert quote.total == Decimal("10.50")


def test_premium_small_basket_pays_fee():
    quote = compute_benefits(Decimal("4.00"), SubscriptionPlan.PREMIUM)
    assert quote.delivery_fee == Decimal("2.00")
    assert quote.total == Decimal("4.50")


def test_no_plan_threshold_is_ten():
    assert compute_benefits(Decimal("9.99"), None).total == Decimal("11.99")
    assert compute_benefits(Decimal("10.00"), None).total == Decimal("10.00")
    assert compute_benefits(Decimal("10.00"), None).plan == "NONE"


def test_total_never_below_floor():
    assert compute_benefits(Decimal("0.00"), SubscriptionPlan.PREMIUM).total == Decimal("0.50")
    assert compute_benefits(Decimal("0.10"), SubscriptionPlan.PREMIUM, delivery_fee=Decimal("0")).total == Decimal("0.50")


def test_save10_below_minimum_spend():
    result = evaluate_promo("save10", Decimal("15.00"), None, NOW)
    assert result.applied is False
    assert result.discount == Decimal("0.00")
    assert result.message == "Minimum spend $20 required"


def test_save10_applies_and_is_capped():
    assert evaluate_promo("SAVE10", Decimal("50.00"), None, NOW).discount == Decimal("5.00")
    assert evaluate_promo(" save10 ", Decimal("200.00"), None, NOW).discount == Decimal("6.00")


def test_unknown_and_blank_codes():
    assert evaluate_promo("BOGUS", Decimal("50"), None, NOW).message == "Promo code not recognized"
    blank = evaluate_promo("   ", Decimal("50"), None, NOW)
    assert blank.applied is False and blank.message == ""


def test_store_promo_takes_precedence_until_expired():
    record = PromoCode(id=1, code="WELCOME", percent_off=Decimal("15"), active=True, expires_at=NOW + timedelta(days=1))
    assert evaluate_promo("welcome", Decimal("20.00"), record, NOW).discount == Decimal("3.00")

    expired = PromoCode(id=1, code="WELCOME", percent_off=Decimal("15"), active=True, expires_at=NOW - timedelta(seconds=1))
    assert evaluate_promo("welcome", Decimal("20.00"), expired, NOW).applied is False


def test_immediate_delivery_eta_window():
    assert (plan_delivery("NOW", Decimal("12"), now=NOW).eta_min, plan_delivery("NOW", Decimal("12"), now=NOW).eta_max) == (25, 35)
    fast = plan_delivery(DeliveryType.NOW, Decimal("30.00"), now=NOW)
    assert (fast.eta_min, fast.eta_max) == (20, 30)


def test_scheduled_delivery_requires_lead_time():
    with pytest.raises(InvalidScheduleError):
        plan_delivery("SCHEDULED", Decimal("12"), NOW + timedelta(minutes=30), NOW)
    with pytest.raises(InvalidScheduleError):
        plan_delivery("SCHEDULED", Decimal("12"), None, NOW)

    plan = plan_delivery("scheduled", Decimal("12"), (NOW + timedelta(hours=2)).isoformat(), NOW)
    assert plan.delivery_type == DeliveryType.SCHEDULED
    start, end = plan.window
    assert end - start == timedelta(minutes=20)
