import pytest


stripe = pytest.importorskip("stripe")


@pytest.mark.asyncio
async def test_stripe_parse_webhook(monkeypatch):
    from core.settings import payment_settings
    from infrastructure.external.payments import get_payment_gateway
    from infrastructure.external.payments.stripe_client import StripeClient

    monkeypatch.setattr(payment_settings.stripe, "webhook_secret", "whsec_test")

    # Fake construct_event to bypass cryptography
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return {
                "id": "evt_1",
                "type": "payment_intent.succeeded",
                "data": {"object": {"id": "pi_123", "status": "succeeded", "amount_received": 1250}},
            }

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)

    gw = get_payment_gateway("stripe")
    assert isinstance(gw, StripeClient)
    evt = await gw.parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, b"{}")
    assert evt.type == "payment_intent.succeeded"
    assert evt.provider == "stripe"
    assert evt.provider_ref == "pi_123"
    assert evt.status == "PAID"


@pytest.mark.asyncio
async def test_stripe_rejects_bad_signature(monkeypatch):
    from core.settings import payment_settings
    from infrastructure.external.payments.exceptions import PaymentSignatureError
    from infrastructure.external.payments.stripe_client import StripeClient

    monkeypatch.setattr(payment_settings.stripe, "webhook_secret", "whsec_test")

    class _RejectingWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            raise ValueError("bad payload")

    monkeypatch.setattr(stripe, "Webhook", _RejectingWebhook)

    with pytest.raises(PaymentSignatureError):
        await StripeClient().parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, b"{}")
    with pytest.raises(PaymentSignatureError):
        await StripeClient().parse_webhook({}, b"{}")


@pytest.mark.asyncio
async def test_stripe_without_secret_key_is_unavailable(monkeypatch):
    from core.settings import payment_settings
    from application.dtos.payments import CreateIntent
    from domain.common.exceptions import GatewayUnavailableError
    from infrastructure.external.payments.stripe_client import StripeClient

    monkeypatch.setattr(payment_settings.stripe, "secret_key", None)

    def _no_network(**kwargs):
        raise AssertionError("network call attempted")

    monkeypatch.setattr(stripe.PaymentIntent, "create", _no_network)

    with pytest.raises(GatewayUnavailableError) as exc:
        await StripeClient().create_intent(CreateIntent(amount="5.00", currency="SGD", reference="ORD-1"))
    assert exc.value.reason == "misconfigured"


def test_minor_unit_conversion():
    from decimal import Decimal
    from infrastructure.external.payments.stripe_client import StripeClient

    assert StripeClient._to_minor(Decimal("12.34"), "SGD") == 1234
    assert StripeClient._to_minor(Decimal("500"), "JPY") == 500
    assert StripeClient._from_minor(1234, "sgd") == Decimal("12.34")
