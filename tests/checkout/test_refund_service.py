import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.dtos.payments import RefundRequest, RefundResult
from application.services.order_materializer import OrderMaterializer, PaymentConfirmation
from application.services.refund_service import RefundService
from domain.common.exceptions import (
    DomainValidationException,
    NoPendingRefundException,
    RefundAlreadyPendingException,
    RefundFailedError,
    RefundNotAllowedException,
)
from domain.ledger.entity import TransactionStatus
from domain.order.entity import LineItem, PaymentMethod, PaymentStatus, RefundMode, RefundStatus


ACCOUNT = 31


class RecordingGateway:
    provider = "paypal"
    eager_order = False

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.refunds: list[RefundRequest] = []

    async def refund(self, req: RefundRequest) -> RefundResult:
        self.refunds.append(req)
        if self.fail:
            raise RefundFailedError(self.provider, "INSUFFICIENT_FUNDS")
        return RefundResult(refund_id="RF-100", status="COMPLETED", provider=self.provider, provider_ref=req.ref)

    async def aclose(self) -> None:
        return None


async def _paid_order(uow_factory, method: PaymentMethod = PaymentMethod.PAYPAL, reference: str = "PP-PAID") -> int:
    result = await OrderMaterializer(uow_factory).finalize(
        PaymentConfirmation(
            account_id=ACCOUNT,
            method=method,
            reference=reference,
            amount=Decimal("12.00"),
            currency="SGD",
            capture_id="CAP-1",
            snapshot_items=[LineItem(product_id=1, name="Honey", unit_price=Decimal("12.00"), quantity=1)],
            snapshot_total=Decimal("12.00"),
        )
    )
    return result.order_id


@pytest.mark.asyncio
async def test_request_then_live_approve(uow_factory):
    order_id = await _paid_order(uow_factory)
    gateway = RecordingGateway()
    service = RefundService(uow_factory, lambda provider: gateway)

    requested = await service.request_refund(ACCOUNT, order_id, "Damaged packaging")
    assert requested.refund_status == RefundStatus.REQUESTED
    with pytest.raises(RefundAlreadyPendingException):
        await service.request_refund(ACCOUNT, order_id, "again")

    approved = await service.approve(order_id, mode=RefundMode.LIVE)

    assert approved.payment_status == PaymentStatus.REFUNDED
    assert approved.refund_status == RefundStatus.APPROVED
    assert approved.refunded_amount == Decimal("12.00")
    assert len(gateway.refunds) == 1
    assert gateway.refunds[0].ref == "CAP-1"
    assert gateway.refunds[0].amount == Decimal("12.00")

    async with uow_factory(readonly=True) as uow:
        history = await uow.ledger.list_for_order(order_id)
    assert [t.status for t in history] == [
        TransactionStatus.COMPLETED,
        TransactionStatus.REFUND_REQUESTED,
        TransactionStatus.REFUNDED,
    ]
    assert history[-1].refund_id == "RF-100"

    with pytest.raises(RefundNotAllowedException):
        await service.request_refund(ACCOUNT, order_id, "one more")


@pytest.mark.asyncio
async def test_gateway_failure_keeps_request_open(uow_factory):
    order_id = await _paid_order(uow_factory)
    service = RefundService(uow_factory, lambda provider: RecordingGateway(fail=True))
    await service.request_refund(ACCOUNT, order_id, "Wrong item")

    with pytest.raises(RefundFailedError):
        await service.approve(order_id, mode=RefundMode.LIVE)

    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(order_id)
    assert order.refund_status == RefundStatus.REQUESTED
    assert order.payment_status == PaymentStatus.PAID

    # 管理员改用钱包退款
    approved = await service.approve(order_id, mode=RefundMode.MANUAL, partial=True)
    assert approved.payment_status == PaymentStatus.PARTIAL_REFUND
    assert approved.refunded_amount == Decimal("6.00")
    async with uow_factory(readonly=True) as uow:
        balance = await uow.wallets.get_balance(ACCOUNT)
        entries = await uow.wallets.list_entries(ACCOUNT)
    assert balance == Decimal("6.00")
    assert entries[0].reference_id == str(order_id)


@pytest.mark.asyncio
async def test_reject_keeps_payment_status(uow_factory):
    order_id = await _paid_order(uow_factory)
    service = RefundService(uow_factory, lambda provider: RecordingGateway())
    await service.request_refund(ACCOUNT, order_id, "Changed my mind")

    with pytest.raises(DomainValidationException):
        await service.reject(order_id, "  ")

    rejected = await service.reject(order_id, "Outside policy")
    assert rejected.refund_status == RefundStatus.REJECTED
    assert rejected.payment_status == PaymentStatus.PAID

    with pytest.raises(NoPendingRefundException):
        await service.reject(order_id, "twice")
    with pytest.raises(NoPendingRefundException):
        await service.approve(order_id)


@pytest.mark.asyncio
async def test_refund_window_and_method_rules(uow_factory):
    order_id = await _paid_order(uow_factory)
    nets_order = await _paid_order(uow_factory, PaymentMethod.NETS, "NETS-PAID")
    service = RefundService(uow_factory, lambda provider: RecordingGateway())

    with pytest.raises(RefundNotAllowedException):
        await service.request_refund(ACCOUNT, order_id, "late", now=datetime.now(timezone.utc) + timedelta(days=8))
    with pytest.raises(RefundNotAllowedException):
        await service.request_refund(ACCOUNT, nets_order, "qr payment")
    with pytest.raises(DomainValidationException):
        await service.request_refund(ACCOUNT, order_id, "")


async def _refunded_rows(uow_factory, order_id: int):
    async with uow_factory(readonly=True) as uow:
        history = await uow.ledger.list_for_order(order_id)
    return [t for t in history if t.status == TransactionStatus.REFUNDED]


@pytest.mark.asyncio
async def test_concurrent_approvals_refund_once(uow_factory):
    order_id = await _paid_order(uow_factory)
    service = RefundService(uow_factory, lambda provider: RecordingGateway())
    await service.request_refund(ACCOUNT, order_id, "Expired product")

    results = await asyncio.gather(
        service.approve(order_id, mode=RefundMode.MANUAL),
        service.approve(order_id, mode=RefundMode.MANUAL),
        return_exceptions=True,
    )

    approved = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(approved) == 1
    assert len(errors) == 1 and isinstance(errors[0], NoPendingRefundException)
    assert approved[0].refund_status == RefundStatus.APPROVED

    rows = await _refunded_rows(uow_factory, order_id)
    assert len(rows) == 1
    assert rows[0].amount == Decimal("12.00")
    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(order_id)
        balance = await uow.wallets.get_balance(ACCOUNT)
    assert order.refunded_amount == Decimal("12.00")
    assert balance == Decimal("12.00")


@pytest.mark.asyncio
async def test_concurrent_approve_and_reject_resolve_once(uow_factory):
    order_id = await _paid_order(uow_factory)
    service = RefundService(uow_factory, lambda provider: RecordingGateway())
    await service.request_refund(ACCOUNT, order_id, "Wrong size")

    approve, reject = await asyncio.gather(
        service.approve(order_id, mode=RefundMode.MANUAL),
        service.reject(order_id, "Outside policy"),
        return_exceptions=True,
    )

    outcomes = [r for r in (approve, reject) if not isinstance(r, Exception)]
    assert len(outcomes) == 1
    loser = reject if outcomes[0] is approve else approve
    assert isinstance(loser, NoPendingRefundException)

    rows = await _refunded_rows(uow_factory, order_id)
    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(order_id)
    if order.refund_status == RefundStatus.APPROVED:
        assert len(rows) == 1
        assert order.payment_status == PaymentStatus.REFUNDED
    else:
        assert order.refund_status == RefundStatus.REJECTED
        assert rows == []
        assert order.payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_partial_manual_refund_ledger_row(uow_factory):
    order_id = await _paid_order(uow_factory)
    service = RefundService(uow_factory, lambda provider: RecordingGateway())
    await service.request_refund(ACCOUNT, order_id, "Half spoiled")

    await service.approve(order_id, mode=RefundMode.MANUAL, partial=True)

    rows = await _refunded_rows(uow_factory, order_id)
    assert len(rows) == 1
    assert rows[0].amount == Decimal("6.00")
    assert rows[0].payment_method == "WALLET"
    assert rows[0].refund_id.startswith(f"WALLET-{order_id}-")


@pytest.mark.asyncio
async def test_amount_override_is_clamped_to_remaining_balance(uow_factory):
    order_id = await _paid_order(uow_factory)
    gateway = RecordingGateway()
    service = RefundService(uow_factory, lambda provider: gateway)

    await service.request_refund(ACCOUNT, order_id, "One jar broken")
    first = await service.approve(order_id, mode=RefundMode.LIVE, amount_override=Decimal("4.50"))
    assert first.payment_status == PaymentStatus.PARTIAL_REFUND
    assert first.refunded_amount == Decimal("4.50")
    assert gateway.refunds[0].amount == Decimal("4.50")

    await service.request_refund(ACCOUNT, order_id, "Rest of the order")
    second = await service.approve(order_id, mode=RefundMode.LIVE, amount_override=Decimal("50.00"))
    assert second.payment_status == PaymentStatus.REFUNDED
    assert second.refunded_amount == Decimal("12.00")
    assert gateway.refunds[1].amount == Decimal("7.50")

    rows = await _refunded_rows(uow_factory, order_id)
    assert [r.amount for r in rows] == [Decimal("4.50"), Decimal("7.50")]

    with pytest.raises(RefundNotAllowedException):
        await service.request_refund(ACCOUNT, order_id, "again")
