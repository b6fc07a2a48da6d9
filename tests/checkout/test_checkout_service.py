from decimal import Decimal
from typing import Any

import pytest

from application.dtos.checkout import FinalizeOutcome
from application.dtos.payments import (
    CaptureResult,
    CreateIntent,
    IntentResult,
    QueryResult,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from application.services.checkout_service import CheckoutService
from core.config import settings
from domain.common.exceptions import EmptyCartError, InvalidPromoError, PendingIntentNotFoundException
from domain.order.entity import PaymentMethod, PaymentStatus
from domain.subscription.entity import SubscriptionPlan


ACCOUNT = 11


class StubGateway:
    """按脚本返回查询状态的网关，记录所有调用"""

    def __init__(self, provider: str = "paypal", *, eager_order: bool = False, statuses=None):
        self.provider = provider
        self.eager_order = eager_order
        self.statuses = list(statuses or ["PAID"])
        self.created: list[CreateIntent] = []
        self.queries = 0
        self.captures: list[str] = []

    async def create_intent(self, req: CreateIntent) -> IntentResult:
        self.created.append(req)
        ref = f"{self.provider}-ref-{len(self.created)}"
        return IntentResult(provider=self.provider, provider_ref=ref, client_params={"ref": ref})

    async def capture_intent(self, provider_ref: str) -> CaptureResult:
        self.captures.append(provider_ref)
        req = self.created[-1]
        return CaptureResult(
            provider=self.provider,
            provider_ref=provider_ref,
            status="PAID",
            payer_email="payer@example.com",
            amount=req.amount,
            currency=req.currency,
            capture_id=f"CAP-{provider_ref}",
        )

    async def query_intent(self, provider_ref: str) -> QueryResult:
        self.queries += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return QueryResult(provider=self.provider, provider_ref=provider_ref, status=status)

    async def refund(self, req: RefundRequest) -> RefundResult:
        return RefundResult(refund_id="RF-1", status="COMPLETED", provider=self.provider)

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def _service(uow_factory, registry, gateway: StubGateway) -> CheckoutService:
    return CheckoutService(uow_factory=uow_factory, registry=registry, gateway_factory=lambda provider: gateway)


@pytest.mark.asyncio
async def test_start_then_capture_creates_paid_order(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Milk", "3.50", 2), ("Bread", "5.00", 1)])
    gateway = StubGateway()
    service = _service(uow_factory, registry, gateway)

    pending, client_params = await service.start(ACCOUNT, "paypal")
    assert pending.total == Decimal("12.00")
    assert pending.subtotal == Decimal("12.00")
    assert client_params == {"ref": pending.provider_ref}
    assert gateway.created[0].reference.startswith(f"ORD-{ACCOUNT}-")
    assert len(gateway.created[0].idempotency_key) == 64

    status = await service.capture(ACCOUNT, "paypal", pending.provider_ref)
    assert status.status == "PAID"
    assert status.outcome == FinalizeOutcome.CREATED

    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(status.order_id)
        cart = await uow.carts.get_cart(ACCOUNT)
        capture_id = await uow.ledger.find_capture_id(status.order_id)
    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_reference == pending.provider_ref
    assert order.subtotal == order.items_total() == Decimal("12.00")
    assert order.total_amount == Decimal("12.00")
    assert capture_id == f"CAP-{pending.provider_ref}"
    assert cart.is_empty
    assert await registry.current(ACCOUNT, "paypal") is None

    # 重复的重定向返回：意图已关闭，按引用返回同一订单
    again = await service.capture(ACCOUNT, "paypal", pending.provider_ref)
    assert again.order_id == status.order_id
    assert gateway.captures == [pending.provider_ref]


@pytest.mark.asyncio
async def test_capture_rejects_superseded_reference(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Apples", "4.00", 3)])
    gateway = StubGateway()
    service = _service(uow_factory, registry, gateway)

    first, _ = await service.start(ACCOUNT, "paypal")
    second, _ = await service.start(ACCOUNT, "paypal")
    assert first.provider_ref != second.provider_ref

    with pytest.raises(PendingIntentNotFoundException):
        await service.capture(ACCOUNT, "paypal", first.provider_ref)

    status = await service.capture(ACCOUNT, "paypal", second.provider_ref)
    assert status.status == "PAID"


@pytest.mark.asyncio
async def test_quote_rejects_empty_cart(uow_factory, registry):
    service = _service(uow_factory, registry, StubGateway())
    with pytest.raises(EmptyCartError):
        await service.quote(ACCOUNT)


@pytest.mark.asyncio
async def test_unknown_promo_is_informational_in_quote_but_blocks_checkout(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Cheese", "25.00", 1)])
    gateway = StubGateway()
    service = _service(uow_factory, registry, gateway)

    quote = await service.quote(ACCOUNT, promo_code="BOGUS")
    assert quote.promo_message == "Promo code not recognized"
    assert quote.promo_discount == Decimal("0")
    assert quote.total == Decimal("25.00")

    with pytest.raises(InvalidPromoError):
        await service.start(ACCOUNT, "paypal", promo_code="BOGUS")
    assert gateway.created == []

    pending, _ = await service.start(ACCOUNT, "paypal", promo_code="save10")
    assert pending.promo_code == "SAVE10"
    assert pending.total == Decimal("22.50")


@pytest.mark.asyncio
async def test_premium_member_quote(uow_factory, registry, seed_cart, subscribe):
    await seed_cart(ACCOUNT, [("Milk", "3.50", 2), ("Bread", "5.00", 1)])
    await subscribe(ACCOUNT, SubscriptionPlan.PREMIUM)
    service = _service(uow_factory, registry, StubGateway())

    quote = await service.quote(ACCOUNT)
    assert quote.plan == "PREMIUM"
    assert quote.delivery_fee == Decimal("0")
    assert quote.total == Decimal("10.50")


@pytest.mark.asyncio
async def test_status_polling_is_bounded(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Fish", "15.00", 1)])
    gateway = StubGateway("nets", statuses=["PENDING"])
    service = _service(uow_factory, registry, gateway)
    pending, _ = await service.start(ACCOUNT, "nets")

    status = await service.status(ACCOUNT, "nets")

    assert status.status == "PENDING"
    assert gateway.queries == settings.checkout.poll_attempts
    assert gateway.captures == []
    assert await registry.current(ACCOUNT, "nets") is not None


@pytest.mark.asyncio
async def test_status_finalizes_once_paid(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Fish", "15.00", 1)])
    gateway = StubGateway("nets", statuses=["PENDING", "PAID"])
    service = _service(uow_factory, registry, gateway)
    pending, _ = await service.start(ACCOUNT, "nets")

    status = await service.status(ACCOUNT, "nets", pending.provider_ref)

    assert status.status == "PAID"
    assert status.outcome == FinalizeOutcome.CREATED
    assert gateway.queries == 2


@pytest.mark.asyncio
async def test_failed_payment_closes_pending_intent(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Fish", "15.00", 1)])
    gateway = StubGateway("nets", statuses=["FAILED"])
    service = _service(uow_factory, registry, gateway)
    await service.start(ACCOUNT, "nets")

    status = await service.status(ACCOUNT, "nets")

    assert status.status == "FAILED"
    assert await registry.current(ACCOUNT, "nets") is None
    async with uow_factory(readonly=True) as uow:
        assert await uow.orders.count_for_account(ACCOUNT) == 0
        assert not (await uow.carts.get_cart(ACCOUNT)).is_empty


@pytest.mark.asyncio
async def test_webhook_finalizes_eager_pending_order(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Coffee", "8.00", 2)])
    gateway = StubGateway("stripe", eager_order=True)
    service = _service(uow_factory, registry, gateway)

    pending, _ = await service.start(ACCOUNT, "stripe")
    assert pending.order_id is not None
    async with uow_factory(readonly=True) as uow:
        assert (await uow.orders.get(pending.order_id)).payment_status == PaymentStatus.PENDING

    event = WebhookEvent(
        id="evt_1",
        type="payment_intent.succeeded",
        provider="stripe",
        data={"object": {"id": pending.provider_ref, "amount_received": 1600, "currency": "sgd", "latest_charge": "ch_1"}},
        provider_ref=pending.provider_ref,
        status="PAID",
    )
    result = await service.handle_webhook(event)
    assert result.order_id == pending.order_id
    assert result.outcome == FinalizeOutcome.UPDATED

    # 同一事件重放
    replay = await service.handle_webhook(event)
    assert replay.outcome == FinalizeOutcome.DUPLICATE_NOOP

    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(pending.order_id)
        capture_id = await uow.ledger.find_capture_id(pending.order_id)
    assert order.payment_status == PaymentStatus.PAID
    assert capture_id == "ch_1"
    assert await registry.current(ACCOUNT, "stripe") is None


@pytest.mark.asyncio
async def test_webhook_for_unknown_order_is_ignored(uow_factory, registry):
    service = _service(uow_factory, registry, StubGateway("stripe", eager_order=True))
    event = WebhookEvent(
        id="evt_2",
        type="payment_intent.succeeded",
        provider="stripe",
        data={"object": {"id": "pi_unknown"}},
        provider_ref="pi_unknown",
        status="PAID",
    )
    assert await service.handle_webhook(event) is None

    ignored = WebhookEvent(id="evt_3", type="charge.updated", provider="stripe", data={})
    assert await service.handle_webhook(ignored) is None
    async with uow_factory(readonly=True) as uow:
        assert await uow.orders.count_all() == 0


@pytest.mark.asyncio
async def test_failed_poll_marks_eager_order_failed(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Coffee", "8.00", 2)])
    gateway = StubGateway("stripe", eager_order=True, statuses=["FAILED"])
    service = _service(uow_factory, registry, gateway)
    pending, _ = await service.start(ACCOUNT, "stripe")

    status = await service.status(ACCOUNT, "stripe")

    assert status.status == "FAILED"
    assert status.order_id == pending.order_id
    assert gateway.captures == []
    async with uow_factory(readonly=True) as uow:
        order = await uow.orders.get(pending.order_id)
        cart = await uow.carts.get_cart(ACCOUNT)
    assert order.payment_status == PaymentStatus.FAILED
    assert not cart.is_empty


@pytest.mark.asyncio
async def test_failed_webhook_marks_pending_order_failed(uow_factory, registry, seed_cart):
    await seed_cart(ACCOUNT, [("Coffee", "8.00", 2)])
    service = _service(uow_factory, registry, StubGateway("stripe", eager_order=True))
    pending, _ = await service.start(ACCOUNT, "stripe")

    failed = WebhookEvent(
        id="evt_f1",
        type="payment_intent.payment_failed",
        provider="stripe",
        data={"object": {"id": pending.provider_ref}},
        provider_ref=pending.provider_ref,
        status="FAILED",
    )
    assert await service.handle_webhook(failed) is None
    async with uow_factory(readonly=True) as uow:
        assert (await uow.orders.get(pending.order_id)).payment_status == PaymentStatus.FAILED

    # 之后到达的成功事件仍可把订单推进到 PAID
    succeeded = WebhookEvent(
        id="evt_f2",
        type="payment_intent.succeeded",
        provider="stripe",
        data={"object": {"id": pending.provider_ref, "amount_received": 1600, "currency": "sgd"}},
        provider_ref=pending.provider_ref,
        status="PAID",
    )
    result = await service.handle_webhook(succeeded)
    assert result.outcome == FinalizeOutcome.UPDATED

    # 已支付订单不会被迟到的失败事件回退
    await service.handle_webhook(failed)
    async with uow_factory(readonly=True) as uow:
        assert (await uow.orders.get(pending.order_id)).payment_status == PaymentStatus.PAID
