"""
订单落库（finalize）应用服务

把“一次成功的支付”转换成“恰好一条已支付订单”。重定向返回、客户端轮询、
Webhook 推送以及对账任务都可能在任意顺序、任意次数地调用 finalize；
唯一索引 (payment_method, payment_reference) 是插入或读取的汇合点。

步骤：lookup -> claim_or_insert -> attach_items -> clear_cart -> commit -> append_ledger

补偿：commit 之前的任何失败回滚整个工作单元（无任何可见副作用）；
append_ledger 在提交之后独立的工作单元中执行，失败只记录日志。
库存在购物车变更时已预留，这里不触碰库存。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.checkout import FinalizeOutcome, FinalizeResult
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import DuplicatePaymentReferenceException, EmptyCartError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import LedgerTransaction, TransactionStatus
from domain.order.entity import (
    DeliveryMeta,
    LineItem,
    Order,
    PaymentMethod,
    PaymentStatus,
    items_total,
)


logger = get_logger(__name__)

FINALIZE_STEPS = ("lookup", "claim_or_insert", "attach_items", "clear_cart", "commit", "append_ledger")


@dataclass
class PaymentConfirmation:
    """网关确认的一次支付，以及重建订单所需的快照"""

    account_id: int
    method: PaymentMethod
    reference: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payer_id: Optional[str] = None
    payer_email: Optional[str] = None
    capture_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    snapshot_items: list[LineItem] = field(default_factory=list)
    snapshot_total: Optional[Decimal] = None
    echo_items: list[LineItem] = field(default_factory=list)
    meta: Optional[DeliveryMeta] = None


async def append_ledger_best_effort(
    uow_factory: Callable[..., AbstractUnitOfWork],
    txn: LedgerTransaction,
) -> bool:
    """在独立事务中追加账本记录；失败记录日志后吞掉，不影响已提交的状态变更"""
    try:
        async with uow_factory() as uow:
            await uow.ledger.append(txn)
        return True
    except Exception as exc:
        logger.error(
            "ledger_append_failed",
            order_id=txn.order_id,
            status=txn.status.value,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return False


class OrderMaterializer:
    """幂等的订单落库服务"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    @staticmethod
    def _step(step: str, **kwargs) -> None:
        logger.debug("finalize_step", step=step, **kwargs)

    async def open_pending(
        self,
        *,
        account_id: int,
        method: PaymentMethod,
        reference: str,
        items: list[LineItem],
        total: Decimal,
        currency: Optional[str] = None,
        meta: Optional[DeliveryMeta] = None,
    ) -> int:
        """直接扣款流程在创建意图时即写入 PENDING 订单；重复调用返回同一订单"""
        async with self._uow_factory() as uow:
            existing = await uow.orders.get_by_payment_reference(method, reference)
            if existing is not None:
                return existing.id
            order = Order.new(
                account_id=account_id,
                method=method,
                reference=reference,
                items=items,
                total_amount=total,
                currency=currency or settings.checkout.currency,
                status=PaymentStatus.PENDING,
                meta=meta,
            )
            try:
                created = await uow.orders.add(order)
            except DuplicatePaymentReferenceException:
                winner = await uow.orders.get_by_payment_reference(method, reference)
                return winner.id
            logger.info("pending_order_opened", order_id=created.id, payment_method=method.value, payment_reference=reference)
            return created.id

    async def _resolve_items(self, uow: AbstractUnitOfWork, cmd: PaymentConfirmation) -> list[LineItem]:
        cart = await uow.carts.get_cart(cmd.account_id)
        if not cart.is_empty:
            return cart.line_items()
        if cmd.snapshot_items:
            logger.info("finalize_using_snapshot", account_id=cmd.account_id, payment_reference=cmd.reference)
            return list(cmd.snapshot_items)
        if cmd.echo_items:
            logger.info("finalize_using_gateway_echo", account_id=cmd.account_id, payment_reference=cmd.reference)
            return list(cmd.echo_items)
        return []

    def _noop(self, order_id: int, cmd: PaymentConfirmation) -> FinalizeResult:
        logger.info(
            "order_finalize_duplicate",
            order_id=order_id,
            payment_method=cmd.method.value,
            payment_reference=cmd.reference,
        )
        return FinalizeResult(order_id=order_id, outcome=FinalizeOutcome.DUPLICATE_NOOP)

    async def finalize(self, cmd: PaymentConfirmation) -> FinalizeResult:
        now = datetime.now(timezone.utc)
        paid_at = cmd.paid_at or now
        currency = cmd.currency or settings.checkout.currency

        async with self._uow_factory() as uow:
            self._step("lookup", payment_reference=cmd.reference)
            existing = await uow.orders.get_by_payment_reference(cmd.method, cmd.reference)
            if existing is not None and existing.is_settled:
                return self._noop(existing.id, cmd)

            self._step("claim_or_insert", payment_reference=cmd.reference, found=existing is not None)
            if existing is not None:
                claimed = await uow.orders.mark_paid_if_unpaid(
                    existing.id, paid_at=paid_at, payer_email=cmd.payer_email, meta=cmd.meta
                )
                if not claimed:
                    return self._noop(existing.id, cmd)
                order_id, account_id, total = existing.id, existing.account_id, existing.total_amount
                outcome = FinalizeOutcome.UPDATED
            else:
                items = await self._resolve_items(uow, cmd)
                if not items:
                    logger.error(
                        "order_finalize_empty_cart",
                        account_id=cmd.account_id,
                        payment_method=cmd.method.value,
                        payment_reference=cmd.reference,
                    )
                    raise EmptyCartError(cmd.account_id, cmd.reference)
                total = cmd.snapshot_total if cmd.snapshot_total is not None else cmd.amount
                if total is None:
                    total = items_total(items)
                order = Order.new(
                    account_id=cmd.account_id,
                    method=cmd.method,
                    reference=cmd.reference,
                    items=items,
                    total_amount=total,
                    currency=currency,
                    status=PaymentStatus.PAID,
                    meta=cmd.meta,
                    payer_email=cmd.payer_email,
                    paid_at=paid_at,
                    now=now,
                )
                self._step("attach_items", payment_reference=cmd.reference, items=len(items))
                try:
                    created = await uow.orders.add(order)
                except DuplicatePaymentReferenceException:
                    winner = await uow.orders.get_by_payment_reference(cmd.method, cmd.reference)
                    return self._noop(winner.id, cmd)
                order_id, account_id = created.id, created.account_id
                total = created.total_amount
                outcome = FinalizeOutcome.CREATED

            self._step("clear_cart", account_id=account_id)
            await uow.carts.clear(account_id)
            self._step("commit", order_id=order_id)
            await uow.commit()

        logger.info(
            "order_finalized",
            order_id=order_id,
            outcome=outcome.value,
            payment_method=cmd.method.value,
            payment_reference=cmd.reference,
            total=str(total),
        )
        self._step("append_ledger", order_id=order_id)
        await append_ledger_best_effort(
            self._uow_factory,
            LedgerTransaction(
                order_id=order_id,
                amount=cmd.amount if cmd.amount is not None else total,
                currency=currency,
                status=TransactionStatus.COMPLETED,
                payment_method=cmd.method.value,
                payment_reference=cmd.reference,
                payer_id=cmd.payer_id,
                payer_email=cmd.payer_email,
                capture_id=cmd.capture_id,
                created_at=paid_at,
            ),
        )
        return FinalizeResult(order_id=order_id, outcome=outcome)
