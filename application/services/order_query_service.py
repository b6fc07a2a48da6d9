"""
订单查询与管理应用服务

列表前先执行过期清扫，保证用户不会看到早已超时的 PENDING 订单。
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from application.services.reconciler import PaymentReconciler
from domain.common.exceptions import OrderNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import LedgerTransaction
from domain.order.entity import DeliveryStatus, Order, PaymentStatus
from domain.wallet.entity import WalletEntry
from core.logging_config import get_logger


logger = get_logger(__name__)


@dataclass
class OrderView:
    order: Order
    latest_transaction: Optional[LedgerTransaction] = None

    @property
    def latest_status(self) -> Optional[str]:
        return self.latest_transaction.status.value if self.latest_transaction else None


@dataclass
class OrderPage:
    items: list[OrderView]
    total: int


class OrderQueryService:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], reconciler: Optional[PaymentReconciler] = None):
        self._uow_factory = uow_factory
        self._reconciler = reconciler or PaymentReconciler(uow_factory)

    async def _attach_latest(self, uow: AbstractUnitOfWork, orders: list[Order]) -> list[OrderView]:
        latest = await uow.ledger.latest_for_orders([o.id for o in orders])
        return [OrderView(order=o, latest_transaction=latest.get(o.id)) for o in orders]

    async def list_for_account(self, account_id: int, skip: int = 0, limit: int = 20) -> OrderPage:
        await self._reconciler.expire_stale()
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.orders.list_for_account(account_id, skip=skip, limit=limit)
            total = await uow.orders.count_for_account(account_id)
            return OrderPage(items=await self._attach_latest(uow, orders), total=total)

    async def list_all(self, skip: int = 0, limit: int = 20, status: Optional[PaymentStatus] = None) -> OrderPage:
        await self._reconciler.expire_stale()
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.orders.list_all(skip=skip, limit=limit, status=status)
            total = await uow.orders.count_all(status=status)
            return OrderPage(items=await self._attach_latest(uow, orders), total=total)

    async def get_for_account(self, account_id: int, order_id: int) -> OrderView:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_for_account(order_id, account_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            return OrderView(order=order, latest_transaction=await uow.ledger.latest_for_order(order_id))

    async def get(self, order_id: int) -> OrderView:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            return OrderView(order=order, latest_transaction=await uow.ledger.latest_for_order(order_id))

    async def history(self, order_id: int) -> list[LedgerTransaction]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.ledger.list_for_order(order_id)

    async def stats(self, account_id: int) -> dict:
        async with self._uow_factory(readonly=True) as uow:
            count, spent = await uow.orders.stats_for_account(account_id)
        return {"total_orders": count, "total_spent": spent}

    async def update_delivery_status(self, order_id: int, status: DeliveryStatus) -> Order:
        async with self._uow_factory() as uow:
            if not await uow.orders.update_delivery_status(order_id, status):
                raise OrderNotFoundException(order_id)
            order = await uow.orders.get(order_id)
        logger.info("delivery_status_updated", order_id=order_id, delivery_status=status.value)
        return order


class WalletService:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def summary(self, account_id: int, limit: int = 50) -> tuple[Decimal, list[WalletEntry]]:
        async with self._uow_factory(readonly=True) as uow:
            balance = await uow.wallets.get_balance(account_id)
            entries = await uow.wallets.list_entries(account_id, limit=limit)
        return balance, entries
