"""
订阅实体

每个账户至多一条当前订阅。状态推进（续期/过期）只在显式的 reconcile 中发生，
读取本身不修改任何字段。
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class SubscriptionPlan(str, Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"

    @classmethod
    def parse(cls, value: str) -> "SubscriptionPlan":
        try:
            return cls((value or "").strip().upper())
        except ValueError:
            raise DomainValidationException(f"Unknown plan: {value}", field="plan") from None


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


def add_months(dt: datetime, months: int) -> datetime:
    """按日历月推进，月末日期向下取整（1/31 + 1 月 -> 2/28）"""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Subscription:
    id: Optional[int]
    account_id: int
    plan: SubscriptionPlan
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    auto_renew: bool = True
    cancel_at_period_end: bool = False
    payment_reference: Optional[str] = None

    def __post_init__(self):
        self.start_date = _ensure_utc(self.start_date)
        self.end_date = _ensure_utc(self.end_date)

    def is_active(self, now: datetime) -> bool:
        """ACTIVE 且未到期；CANCELLED 但仍在已付费周期内也视为有效"""
        if self.status == SubscriptionStatus.ACTIVE:
            return self.end_date >= now
        if self.status == SubscriptionStatus.CANCELLED:
            return self.end_date > now
        return False

    def reconcile(self, now: datetime, period_months: int = 1) -> bool:
        """到期的 ACTIVE 订阅：可续期则顺延整周期，否则置为 EXPIRED。返回是否有变更。"""
        if self.status != SubscriptionStatus.ACTIVE or self.end_date >= now:
            return False
        if self.auto_renew and not self.cancel_at_period_end:
            while self.end_date < now:
                self.end_date = add_months(self.end_date, period_months)
            return True
        self.status = SubscriptionStatus.EXPIRED
        return True

    def cancel_now(self, now: datetime) -> None:
        self.status = SubscriptionStatus.CANCELLED
        self.end_date = now
        self.auto_renew = False

    def cancel_at_end_of_period(self) -> None:
        self.cancel_at_period_end = True
        self.auto_renew = False
