"""
支付状态对账服务

1. sync_statuses：账本里已有收款记录（COMPLETED/PAID）但订单仍未支付的，条件更新为 PAID
2. expire_stale：超时未确认的 PENDING/PROCESSING 订单批量置为 CANCELLED

两者都是条件写入，重复执行不会产生额外变更。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import PaymentMethod


logger = get_logger(__name__)


@dataclass
class SyncReport:
    scanned: int = 0
    updated: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return {"scanned": self.scanned, "updated": self.updated, "skipped": self.skipped}


class PaymentReconciler:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        pending_timeout_seconds: Optional[int] = None,
    ):
        self._uow_factory = uow_factory
        self._timeout = timedelta(
            seconds=pending_timeout_seconds
            if pending_timeout_seconds is not None
            else settings.checkout.pending_timeout_seconds
        )

    async def sync_statuses(self, limit: int = 500) -> SyncReport:
        report = SyncReport()
        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.ledger.captured_with_unpaid_order(limit=limit)
        report.scanned = len(candidates)

        for txn in candidates:
            method = None
            if txn.payment_method:
                try:
                    method = PaymentMethod(txn.payment_method.upper())
                except ValueError:
                    method = None
            try:
                # 每条记录独立事务：单条冲突不影响其余记录
                async with self._uow_factory() as uow:
                    changed = await uow.orders.sync_paid_from_ledger(
                        txn.order_id,
                        method=method,
                        reference=txn.payment_reference,
                        payer_email=txn.payer_email,
                        paid_at=txn.created_at,
                    )
            except BusinessException as exc:
                report.skipped += 1
                logger.warning("reconcile_row_skipped", order_id=txn.order_id, error=exc.message)
                continue
            if changed:
                report.updated += 1
                logger.info("order_status_synced", order_id=txn.order_id, txn_id=txn.id)

        logger.info("reconcile_statuses_completed", **report.to_dict())
        return report

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._timeout
        async with self._uow_factory() as uow:
            expired = await uow.orders.expire_stale(cutoff, now)
        if expired:
            logger.info("pending_orders_expired", count=expired, cutoff=cutoff.isoformat())
        return expired

    async def run_all(self) -> dict:
        report = await self.sync_statuses()
        expired = await self.expire_stale()
        return {**report.to_dict(), "expired": expired}
