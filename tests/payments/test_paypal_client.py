import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CreateIntent, GatewayLineItem, RefundRequest
from core.settings import payment_settings
from domain.common.exceptions import PaymentNotCompletedError, RefundFailedError
from infrastructure.external.payments.exceptions import PaymentProviderError
from infrastructure.external.payments.paypal_client import PayPalClient


COMPLETED_ORDER = {
    "id": "PP-ORDER-1",
    "status": "COMPLETED",
    "payer": {"payer_id": "PAYER1", "email_address": "buyer@example.com"},
    "purchase_units": [
        {
            "items": [{"name": "Milk", "sku": "3", "quantity": "2", "unit_amount": {"value": "3.50"}}],
            "payments": {
                "captures": [
                    {
                        "id": "CAP-77",
                        "amount": {"currency_code": "SGD", "value": "7.00"},
                        "create_time": "2026-10-19T08:00:00Z",
                    }
                ]
            },
        }
    ],
}


@pytest.fixture
def paypal_credentials(monkeypatch):
    monkeypatch.setattr(payment_settings.paypal, "client_id", "client")
    monkeypatch.setattr(payment_settings.paypal, "client_secret", "secret")


def _client(routes: dict) -> tuple[PayPalClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        return routes[(request.method, request.url.path)](request)

    return PayPalClient(transport=httpx.MockTransport(handler)), seen


@pytest.mark.asyncio
async def test_create_intent_sends_items_when_totals_match(paypal_credentials):
    def create(request):
        body = json.loads(request.content)
        unit = body["purchase_units"][0]
        assert unit["amount"]["value"] == "7.00"
        assert unit["items"][0]["sku"] == "3"
        assert request.headers["PayPal-Request-Id"] == "idem-1"
        return httpx.Response(
            201,
            json={"id": "PP-ORDER-1", "status": "CREATED", "links": [{"rel": "approve", "href": "https://paypal/approve"}]},
        )

    client, seen = _client({("POST", "/v2/checkout/orders"): create})
    try:
        intent = await client.create_intent(
            CreateIntent(
                amount=Decimal("7.00"),
                currency="SGD",
                reference="ORD-1",
                items=[GatewayLineItem(product_id=3, name="Milk", unit_price=Decimal("3.50"), quantity=2)],
                idempotency_key="idem-1",
            )
        )
    finally:
        await client.aclose()

    assert intent.provider_ref == "PP-ORDER-1"
    assert intent.client_params["approve_url"] == "https://paypal/approve"
    assert seen[1].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_already_captured_is_treated_as_success(paypal_credentials):
    client, _ = _client(
        {
            ("POST", "/v2/checkout/orders/PP-ORDER-1/capture"): lambda r: httpx.Response(
                422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_ALREADY_CAPTURED"}]}
            ),
            ("GET", "/v2/checkout/orders/PP-ORDER-1"): lambda r: httpx.Response(200, json=COMPLETED_ORDER),
        }
    )
    try:
        capture = await client.capture_intent("PP-ORDER-1")
    finally:
        await client.aclose()

    assert capture.status == "PAID"
    assert capture.capture_id == "CAP-77"
    assert capture.amount == Decimal("7.00")
    assert capture.payer_email == "buyer@example.com"
    assert [(i.product_id, i.quantity) for i in capture.items] == [(3, 2)]


@pytest.mark.asyncio
async def test_unapproved_order_is_not_completed(paypal_credentials):
    client, _ = _client(
        {
            ("POST", "/v2/checkout/orders/PP-ORDER-2/capture"): lambda r: httpx.Response(
                422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_NOT_APPROVED"}]}
            ),
        }
    )
    try:
        with pytest.raises(PaymentNotCompletedError):
            await client.capture_intent("PP-ORDER-2")
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_refund_failure_surfaces_provider_reason(paypal_credentials):
    client, _ = _client(
        {
            ("POST", "/v2/payments/captures/CAP-77/refund"): lambda r: httpx.Response(
                422, json={"name": "UNPROCESSABLE_ENTITY", "message": "Capture already refunded"}
            ),
        }
    )
    try:
        with pytest.raises(RefundFailedError) as exc:
            await client.refund(RefundRequest(ref="CAP-77", amount=Decimal("7.00"), idempotency_key="r-1"))
    finally:
        await client.aclose()
    assert exc.value.provider_reason == "Capture already refunded"


def _html_503(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, text="<html>Service Unavailable</html>", headers={"Content-Type": "text/html"})


@pytest.mark.asyncio
async def test_refund_html_error_page_is_refund_failure(paypal_credentials):
    client, _ = _client({("POST", "/v2/payments/captures/CAP-77/refund"): _html_503})
    try:
        with pytest.raises(RefundFailedError) as exc:
            await client.refund(RefundRequest(ref="CAP-77", amount=Decimal("7.00"), idempotency_key="r-2"))
    finally:
        await client.aclose()
    assert exc.value.provider_reason == "HTTP 503"


@pytest.mark.asyncio
async def test_capture_html_error_page_is_provider_error(paypal_credentials):
    client, _ = _client({("POST", "/v2/checkout/orders/PP-ORDER-1/capture"): _html_503})
    try:
        with pytest.raises(PaymentProviderError) as exc:
            await client.capture_intent("PP-ORDER-1")
    finally:
        await client.aclose()
    assert exc.value.details["provider_code"] == "503"
