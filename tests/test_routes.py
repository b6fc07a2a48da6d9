import jwt
import pytest
from fastapi.testclient import TestClient

from core.config import settings
from domain.cart.entity import Cart, CartItem


def _token(account_id: int = 5, role: str = "customer") -> str:
    return jwt.encode({"sub": str(account_id), "role": role}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


@pytest.fixture
def client():
    from main import app

    with_overrides = TestClient(app)
    yield with_overrides
    app.dependency_overrides.clear()


def test_routes_registered():
    # Basic import test to ensure router loads
    from main import app
    routes = {r.path for r in app.routes}
    assert "/api/v1/payments/webhooks/{provider}" in routes
    assert "/api/v1/checkout/{provider}/intents" in routes
    assert "/api/v1/checkout/{provider}/capture" in routes
    assert "/api/v1/orders/{order_id}/refund-request" in routes
    assert "/api/v1/admin/orders/{order_id}/refund/approve" in routes
    assert "/api/v1/subscriptions/paypal/intents" in routes


def test_requires_bearer_token(client):
    resp = client.get("/api/v1/cart")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"

    resp = client.get("/api/v1/cart", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_admin_routes_require_admin_role(client):
    resp = client.get("/api/v1/admin/orders", headers={"Authorization": f"Bearer {_token()}"})
    assert resp.status_code == 403


def test_cart_uses_authenticated_account(client):
    from api.dependencies import get_cart_service
    from main import app

    seen = []

    class _CartService:
        async def get_cart(self, account_id):
            seen.append(account_id)
            return Cart(account_id, [CartItem(account_id, 1, "Milk", "3.50", 2)])

    app.dependency_overrides[get_cart_service] = lambda: _CartService()
    resp = client.get("/api/v1/cart", headers={"Authorization": f"Bearer {_token(42)}"})

    assert resp.status_code == 200
    assert seen == [42]
    assert resp.json()["data"]["subtotal"] == "7.00"


def test_webhook_acknowledges_verified_event(client, monkeypatch):
    stripe = pytest.importorskip("stripe")
    from api.dependencies import get_checkout_service
    from core.settings import payment_settings
    from main import app

    monkeypatch.setattr(payment_settings.stripe, "webhook_secret", "whsec_test")

    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return {"id": "evt_9", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_9"}}}

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    handled = []

    class _Checkout:
        async def handle_webhook(self, event):
            handled.append(event.provider_ref)
            return None

    app.dependency_overrides[get_checkout_service] = lambda: _Checkout()
    resp = client.post(
        "/api/v1/payments/webhooks/stripe",
        content=b"{}",
        headers={"Content-Type": "application/json", "Stripe-Signature": "t=1,v1=abc"},
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == "evt_9"
    assert handled == ["pi_9"]


def test_failed_webhook_handling_releases_dedupe_claim(monkeypatch):
    stripe = pytest.importorskip("stripe")
    import api.routes.payments as payments_routes
    from api.dependencies import get_checkout_service
    from core.settings import payment_settings
    from main import app

    monkeypatch.setattr(payment_settings.stripe, "webhook_secret", "whsec_test")
    monkeypatch.setattr(settings.redis, "url", "redis://cache:6379/0")

    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return {"id": "evt_7", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_7"}}}

    class _ClaimStore:
        def __init__(self):
            self.keys: set[str] = set()

        async def claim(self, key, ttl=None):
            if key in self.keys:
                return False
            self.keys.add(key)
            return True

        async def release(self, key):
            self.keys.discard(key)

    store = _ClaimStore()

    async def _get_cache():
        return store

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    monkeypatch.setattr(payments_routes, "get_redis_cache", _get_cache)

    handled = []

    class _Checkout:
        def __init__(self, fail: bool):
            self.fail = fail

        async def handle_webhook(self, event):
            if self.fail:
                raise RuntimeError("database unavailable")
            handled.append(event.provider_ref)
            return None

    request = dict(
        content=b"{}",
        headers={"Content-Type": "application/json", "Stripe-Signature": "t=1,v1=abc"},
    )
    client = TestClient(app, raise_server_exceptions=False)
    try:
        app.dependency_overrides[get_checkout_service] = lambda: _Checkout(fail=True)
        first = client.post("/api/v1/payments/webhooks/stripe", **request)
        assert first.status_code == 500
        assert store.keys == set()

        app.dependency_overrides[get_checkout_service] = lambda: _Checkout(fail=False)
        retry = client.post("/api/v1/payments/webhooks/stripe", **request)
        assert retry.status_code == 200
        assert retry.json()["data"].get("duplicate") is None
        assert handled == ["pi_7"]

        replay = client.post("/api/v1/payments/webhooks/stripe", **request)
        assert replay.json()["data"]["duplicate"] is True
        assert handled == ["pi_7"]
    finally:
        app.dependency_overrides.clear()
