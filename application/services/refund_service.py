"""
退款工作流应用服务

状态机：NONE -> REQUESTED -> {APPROVED | REJECTED}
- request：客户发起，条件写入 refund_status != REQUESTED -> REQUESTED
- approve(mode)：LIVE 先调用网关退款再落库；MANUAL 在同一事务中退入钱包
- reject：管理员驳回，不影响支付状态

所有落库都在 UPDATE 中复核 refund_status = REQUESTED，并发审批只有一个生效。
"""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.payments import RefundRequest
from application.ports.payment_gateway import PaymentGateway
from application.services.order_materializer import append_ledger_best_effort
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    NoPendingRefundException,
    OrderNotFoundException,
    RefundAlreadyPendingException,
    RefundFailedError,
    RefundNotAllowedException,
)
from domain.common.money import ZERO
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import LedgerTransaction, TransactionStatus
from domain.order.entity import Order, RefundMode, RefundStatus
from domain.wallet.entity import WalletEntry


logger = get_logger(__name__)


def refund_idempotency_key(order: Order, amount: Decimal) -> str:
    """同一次申请、同一金额得到相同的键，网关据此去重"""
    requested = order.refund_requested_at.isoformat() if order.refund_requested_at else ""
    base = f"refund|{order.id}|{requested}|{amount}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def _require_reason(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise DomainValidationException("A reason is required", field="reason")
    return cleaned


class RefundService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway_factory: Callable[[str], PaymentGateway],
    ):
        self._uow_factory = uow_factory
        self._gateway_factory = gateway_factory

    async def request_refund(
        self,
        account_id: int,
        order_id: int,
        reason: Optional[str],
        now: Optional[datetime] = None,
    ) -> Order:
        reason = _require_reason(reason)
        now = now or datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            order = await uow.orders.get_for_account(order_id, account_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            latest = await uow.ledger.latest_for_order(order_id)
            if order.has_pending_refund(latest.status.value if latest else None):
                raise RefundAlreadyPendingException(order_id)
            order.ensure_refund_requestable(
                now=now,
                window_days=settings.checkout.refund_window_days,
                refundable_methods=settings.checkout.refundable_methods,
            )
            claimed = await uow.orders.claim_refund_request(order_id, reason=reason, now=now)
            if not claimed:
                raise RefundAlreadyPendingException(order_id)
            updated = await uow.orders.get(order_id)

        logger.info("refund_requested", order_id=order_id, account_id=account_id)
        await append_ledger_best_effort(
            self._uow_factory,
            LedgerTransaction(
                order_id=order_id,
                amount=order.refundable_balance,
                currency=order.currency,
                status=TransactionStatus.REFUND_REQUESTED,
                payment_method=order.payment_method.value,
                payment_reference=order.payment_reference,
                payer_email=order.payer_email,
                refund_note=reason,
                created_at=now,
            ),
        )
        return updated

    async def _load_requested(self, uow: AbstractUnitOfWork, order_id: int) -> Order:
        order = await uow.orders.get(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if order.refund_status != RefundStatus.REQUESTED:
            raise NoPendingRefundException(order_id)
        return order

    async def _refund_live(self, order: Order, amount: Decimal, capture_id: Optional[str]) -> str:
        gateway = self._gateway_factory(order.payment_method.provider)
        try:
            result = await gateway.refund(
                RefundRequest(
                    ref=capture_id or order.payment_reference,
                    amount=amount,
                    currency=order.currency,
                    reason=order.refund_reason,
                    idempotency_key=refund_idempotency_key(order, amount),
                )
            )
        except RefundFailedError as exc:
            logger.warning(
                "refund_gateway_failed",
                order_id=order.id,
                provider=order.payment_method.provider,
                provider_reason=exc.provider_reason,
            )
            raise RefundFailedError(exc.provider, exc.provider_reason, order_id=order.id) from exc
        finally:
            await gateway.aclose()
        return result.refund_id

    async def approve(
        self,
        order_id: int,
        *,
        mode: RefundMode = RefundMode.LIVE,
        partial: bool = False,
        amount_override: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """单一的审批入口：计算金额 -> (LIVE) 网关退款 -> 条件落库 -> 追加账本"""
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load_requested(uow, order_id)
            capture_id = await uow.ledger.find_capture_id(order_id)

        amount = order.compute_refund_amount(partial=partial, override=amount_override)
        if amount <= ZERO:
            raise RefundNotAllowedException("Nothing left to refund for this order", order_id=order_id)
        new_status = order.status_after_refund(amount)

        refund_id: Optional[str] = None
        if mode == RefundMode.LIVE:
            refund_id = await self._refund_live(order, amount, capture_id)

        now = now or datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            resolved = await uow.orders.resolve_refund_request(
                order_id, approved=True, now=now, refund_amount=amount, new_status=new_status
            )
            if not resolved:
                raise NoPendingRefundException(order_id)
            if mode == RefundMode.MANUAL:
                await uow.wallets.credit(
                    WalletEntry(
                        account_id=order.account_id,
                        amount=amount,
                        reason=f"Refund for order #{order_id}",
                        reference_type="REFUND",
                        reference_id=str(order_id),
                        created_at=now,
                    )
                )
                refund_id = f"WALLET-{order_id}-{int(now.timestamp())}"
            updated = await uow.orders.get(order_id)

        logger.info(
            "refund_approved",
            order_id=order_id,
            mode=mode.value,
            amount=str(amount),
            payment_status=new_status.value,
        )
        await append_ledger_best_effort(
            self._uow_factory,
            LedgerTransaction(
                order_id=order_id,
                amount=amount,
                currency=order.currency,
                status=TransactionStatus.REFUNDED,
                payment_method=order.payment_method.value if mode == RefundMode.LIVE else "WALLET",
                payment_reference=order.payment_reference,
                payer_email=order.payer_email,
                capture_id=capture_id,
                refund_id=refund_id,
                refund_note=f"{mode.value} refund",
                created_at=now,
            ),
        )
        return updated

    async def reject(self, order_id: int, reason: Optional[str], now: Optional[datetime] = None) -> Order:
        reason = _require_reason(reason)
        now = now or datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            order = await self._load_requested(uow, order_id)
            resolved = await uow.orders.resolve_refund_request(order_id, approved=False, now=now)
            if not resolved:
                raise NoPendingRefundException(order_id)
            updated = await uow.orders.get(order_id)

        logger.info("refund_rejected", order_id=order_id)
        await append_ledger_best_effort(
            self._uow_factory,
            LedgerTransaction(
                order_id=order_id,
                amount=ZERO,
                currency=order.currency,
                status=TransactionStatus.REFUND_REJECTED,
                payment_method=order.payment_method.value,
                payment_reference=order.payment_reference,
                payer_email=order.payer_email,
                refund_note=f"Rejected: {reason}",
                created_at=now,
            ),
        )
        return updated
