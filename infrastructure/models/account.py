"""
账户级模型：订阅与钱包
"""
from sqlalchemy import (
    Boolean, Column, DateTime, Index, Integer, Numeric, String,
)
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionModel(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, comment="账户ID")
    plan = Column(String(20), nullable=False, comment="BASIC/PREMIUM")
    status = Column(String(20), nullable=False, default="ACTIVE", comment="ACTIVE/CANCELLED/EXPIRED")
    start_date = Column(DateTime(timezone=True), nullable=False, comment="开始时间")
    end_date = Column(DateTime(timezone=True), nullable=False, comment="当前周期结束时间")
    auto_renew = Column(Boolean, nullable=False, default=True, comment="自动续期")
    cancel_at_period_end = Column(Boolean, nullable=False, default=False, comment="周期末取消")
    payment_reference = Column(String(255), nullable=True, comment="付款网关引用")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_subscriptions_account_id", "account_id", "id"),
    )


class WalletModel(Base):
    __tablename__ = "wallets"

    account_id = Column(Integer, primary_key=True, comment="账户ID")
    balance = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="余额")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class WalletEntryModel(Base):
    __tablename__ = "wallet_ledger"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, index=True, comment="账户ID")
    amount = Column(Numeric(precision=12, scale=2), nullable=False, comment="变动金额")
    reason = Column(String(255), nullable=False, comment="原因")
    reference_type = Column(String(50), nullable=True, comment="关联类型，如 REFUND")
    reference_id = Column(String(255), nullable=True, comment="关联ID")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
