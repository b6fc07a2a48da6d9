import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.dtos.checkout import FinalizeOutcome
from application.services.order_materializer import OrderMaterializer, PaymentConfirmation
from application.services.reconciler import PaymentReconciler
from domain.common.exceptions import EmptyCartError
from domain.ledger.entity import TransactionStatus
from domain.order.entity import LineItem, PaymentMethod, PaymentStatus


ACCOUNT = 7


def _confirmation(reference: str = "PP-ORDER-1", **kwargs) -> PaymentConfirmation:
    params = dict(
        account_id=ACCOUNT,
        method=PaymentMethod.PAYPAL,
        reference=reference,
        amount=Decimal("12.00"),
        currency="SGD",
        payer_email="shopper@example.com",
        capture_id="CAP-1",
    )
    params.update(kwargs)
    return PaymentConfirmation(**params)


@pytest.mark.asyncio
async def test_finalize_twice_creates_one_order(uow_factory, seed_cart):
    await seed_cart(ACCOUNT, [("Milk", "3.50", 2), ("Bread", "5.00", 1)])
    materializer = OrderMaterializer(uow_factory)

    first = await materializer.finalize(_confirmation())
    second = await materializer.finalize(_confirmation())

    assert first.outcome == FinalizeOutcome.CREATED
    assert second.outcome == FinalizeOutcome.DUPLICATE_NOOP
    assert second.order_id == first.order_id

    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(first.order_id)
        cart = await uow.carts.get_cart(ACCOUNT)
        history = await uow.ledger.list_for_order(first.order_id)
        count = await uow.orders.count_for_account(ACCOUNT)

    assert count == 1
    assert order.payment_status == PaymentStatus.PAID
    assert order.subtotal == Decimal("12.00")
    assert order.items_total() == order.subtotal
    assert order.payer_email == "shopper@example.com"
    assert cart.is_empty
    assert [t.status for t in history] == [TransactionStatus.COMPLETED]
    assert history[0].capture_id == "CAP-1"


@pytest.mark.asyncio
async def test_concurrent_finalize_yields_single_order(uow_factory, seed_cart):
    await seed_cart(ACCOUNT, [("Eggs", "6.00", 2)])
    materializer = OrderMaterializer(uow_factory)

    results = await asyncio.gather(
        materializer.finalize(_confirmation("PP-RACE")),
        materializer.finalize(_confirmation("PP-RACE")),
    )

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes == ["CREATED", "DUPLICATE_NOOP"]
    assert results[0].order_id == results[1].order_id

    async with uow_factory(readonly=True) as uow:
        assert await uow.orders.count_for_account(ACCOUNT) == 1


@pytest.mark.asyncio
async def test_finalize_falls_back_to_snapshot_when_cart_is_gone(uow_factory):
    snapshot = [LineItem(product_id=1, name="Tea", unit_price=Decimal("4.00"), quantity=3)]
    materializer = OrderMaterializer(uow_factory)

    result = await materializer.finalize(
        _confirmation("PP-SNAP", snapshot_items=snapshot, snapshot_total=Decimal("14.00"))
    )

    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(result.order_id)
    assert result.outcome == FinalizeOutcome.CREATED
    assert [i.name for i in order.items] == ["Tea"]
    assert order.subtotal == Decimal("12.00")
    assert order.total_amount == Decimal("14.00")


@pytest.mark.asyncio
async def test_finalize_without_any_items_fails_cleanly(uow_factory):
    materializer = OrderMaterializer(uow_factory)

    with pytest.raises(EmptyCartError):
        await materializer.finalize(_confirmation("PP-EMPTY"))

    async with uow_factory(readonly=True) as uow:
        assert await uow.orders.count_for_account(ACCOUNT) == 0


@pytest.mark.asyncio
async def test_late_confirmation_revives_expired_order(uow_factory, seed_cart):
    await seed_cart(ACCOUNT, [("Rice", "9.00", 1)])
    materializer = OrderMaterializer(uow_factory)
    order_id = await materializer.open_pending(
        account_id=ACCOUNT,
        method=PaymentMethod.STRIPE,
        reference="pi_late",
        items=[LineItem(product_id=1, name="Rice", unit_price=Decimal("9.00"), quantity=1)],
        total=Decimal("11.00"),
    )
    assert await materializer.open_pending(
        account_id=ACCOUNT,
        method=PaymentMethod.STRIPE,
        reference="pi_late",
        items=[LineItem(product_id=1, name="Rice", unit_price=Decimal("9.00"), quantity=1)],
        total=Decimal("11.00"),
    ) == order_id

    later = datetime.now(timezone.utc) + timedelta(minutes=10)
    assert await PaymentReconciler(uow_factory).expire_stale(now=later) == 1

    result = await materializer.finalize(
        _confirmation("pi_late", method=PaymentMethod.STRIPE, amount=Decimal("11.00"))
    )

    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(order_id)
        cart = await uow.carts.get_cart(ACCOUNT)
    assert result.outcome == FinalizeOutcome.UPDATED
    assert result.order_id == order_id
    assert order.payment_status == PaymentStatus.PAID
    assert order.paid_at is not None
    assert cart.is_empty
