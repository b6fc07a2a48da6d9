"""
Delivery planning: ETA window for immediate delivery, lead-time validation
for scheduled delivery.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Union

from domain.common.exceptions import InvalidScheduleError
from domain.order.entity import DeliveryType


NOW_ETA_MIN = 25
NOW_ETA_MAX = 35
FAST_TRACK_TOTAL = Decimal("30.00")
FAST_TRACK_MINUTES = 5
SCHEDULE_LEAD = timedelta(minutes=45)
WINDOW_BEFORE = timedelta(minutes=5)
WINDOW_AFTER = timedelta(minutes=15)


@dataclass(frozen=True)
class DeliveryPlan:
    delivery_type: DeliveryType
    scheduled_at: Optional[datetime] = None
    eta_min: Optional[int] = None
    eta_max: Optional[int] = None

    @property
    def window(self) -> Optional[tuple[datetime, datetime]]:
        if self.scheduled_at is None:
            return None
        return self.scheduled_at - WINDOW_BEFORE, self.scheduled_at + WINDOW_AFTER


def compute_eta(total: Decimal) -> tuple[int, int]:
    """大额订单优先配送，ETA 上下限各减 5 分钟"""
    if Decimal(str(total)) >= FAST_TRACK_TOTAL:
        return NOW_ETA_MIN - FAST_TRACK_MINUTES, NOW_ETA_MAX - FAST_TRACK_MINUTES
    return NOW_ETA_MIN, NOW_ETA_MAX


def validate_schedule(value: Union[str, datetime, None], now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidScheduleError("Scheduled time required.")
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise InvalidScheduleError("Invalid date/time") from None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if value - now < SCHEDULE_LEAD:
        raise InvalidScheduleError("Scheduled time must be at least 45 mins from now.")
    return value


def plan_delivery(
    delivery_type: Union[DeliveryType, str, None],
    total: Decimal,
    scheduled_at: Union[str, datetime, None] = None,
    now: Optional[datetime] = None,
) -> DeliveryPlan:
    kind = delivery_type
    if not isinstance(kind, DeliveryType):
        try:
            kind = DeliveryType((kind or DeliveryType.NOW.value).strip().upper())
        except ValueError:
            raise InvalidScheduleError(f"Unknown delivery type: {delivery_type}") from None
    if kind == DeliveryType.SCHEDULED:
        return DeliveryPlan(delivery_type=kind, scheduled_at=validate_schedule(scheduled_at, now))
    eta_min, eta_max = compute_eta(total)
    return DeliveryPlan(delivery_type=DeliveryType.NOW, eta_min=eta_min, eta_max=eta_max)
