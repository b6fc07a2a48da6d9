from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.services.order_materializer import OrderMaterializer
from application.services.reconciler import PaymentReconciler
from domain.ledger.entity import LedgerTransaction, TransactionStatus
from domain.order.entity import LineItem, PaymentMethod, PaymentStatus


ACCOUNT = 21
ITEMS = [LineItem(product_id=1, name="Butter", unit_price=Decimal("6.00"), quantity=2)]


async def _pending_order(uow_factory, reference: str) -> int:
    return await OrderMaterializer(uow_factory).open_pending(
        account_id=ACCOUNT,
        method=PaymentMethod.STRIPE,
        reference=reference,
        items=ITEMS,
        total=Decimal("12.00"),
    )


@pytest.mark.asyncio
async def test_expiry_respects_timeout(uow_factory):
    order_id = await _pending_order(uow_factory, "pi_expire")
    reconciler = PaymentReconciler(uow_factory, pending_timeout_seconds=300)
    now = datetime.now(timezone.utc)

    assert await reconciler.expire_stale(now=now + timedelta(minutes=4)) == 0
    assert await reconciler.expire_stale(now=now + timedelta(minutes=6)) == 1
    assert await reconciler.expire_stale(now=now + timedelta(minutes=7)) == 0

    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(order_id)
    assert order.payment_status == PaymentStatus.CANCELLED


@pytest.mark.asyncio
async def test_sync_marks_paid_from_ledger_and_is_idempotent(uow_factory):
    order_id = await _pending_order(uow_factory, "pi_sync")
    async with uow_factory() as uow:
        await uow.ledger.append(
            LedgerTransaction(
                order_id=order_id,
                amount=Decimal("12.00"),
                currency="SGD",
                status=TransactionStatus.COMPLETED,
                payment_method="STRIPE",
                payment_reference="pi_sync",
                payer_email="ledger@example.com",
                capture_id="ch_sync",
            )
        )
    reconciler = PaymentReconciler(uow_factory)

    first = await reconciler.sync_statuses()
    second = await reconciler.sync_statuses()

    assert (first.scanned, first.updated) == (1, 1)
    assert (second.scanned, second.updated) == (0, 0)
    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(order_id)
    assert order.payment_status == PaymentStatus.PAID
    assert order.payer_email == "ledger@example.com"
    assert order.paid_at is not None


@pytest.mark.asyncio
async def test_run_all_reports_both_passes(uow_factory):
    await _pending_order(uow_factory, "pi_fresh")
    report = await PaymentReconciler(uow_factory).run_all()
    assert report == {"scanned": 0, "updated": 0, "skipped": 0, "expired": 0}
