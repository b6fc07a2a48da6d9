import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CreateIntent
from core.settings import payment_settings
from domain.common.exceptions import GatewayUnavailableError, PaymentNotCompletedError
from infrastructure.external.payments.nets_client import QUERY_PATH, REQUEST_PATH, NetsClient


@pytest.fixture
def nets_credentials(monkeypatch):
    monkeypatch.setattr(payment_settings.nets, "api_key", "nets-key")
    monkeypatch.setattr(payment_settings.nets, "project_id", "nets-project")


def _recording_transport(handler):
    requests: list[httpx.Request] = []

    def _handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(_handle), requests


@pytest.mark.asyncio
async def test_create_intent_returns_qr_payload(nets_credentials):
    def handler(request):
        assert request.url.path == REQUEST_PATH
        assert request.headers["api-key"] == "nets-key"
        body = json.loads(request.content)
        assert body["txn_id"].endswith("_ORD-9-abc")
        assert body["amt_in_dollars"] == 12.5
        return httpx.Response(200, json={"result": {"data": {"qr_code": "iVBOR", "txn_retrieval_ref": "NETS-REF-1"}}})

    transport, requests = _recording_transport(handler)
    client = NetsClient(transport=transport)
    try:
        intent = await client.create_intent(CreateIntent(amount=Decimal("12.50"), currency="SGD", reference="ORD-9-abc"))
    finally:
        await client.aclose()

    assert intent.provider_ref == "NETS-REF-1"
    assert intent.client_params["qr_code"].startswith("data:image/png;base64,")
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_query_404_means_still_pending(nets_credentials):
    transport, requests = _recording_transport(lambda request: httpx.Response(404, json={}))
    client = NetsClient(transport=transport)
    try:
        result = await client.query_intent("NETS-REF-1")
    finally:
        await client.aclose()

    assert result.status == "PENDING"
    assert requests[0].url.path == QUERY_PATH


@pytest.mark.asyncio
@pytest.mark.parametrize("txn_status, expected", [(1, "PENDING"), (2, "PAID"), (3, "FAILED")])
async def test_query_maps_txn_status(nets_credentials, txn_status, expected):
    transport, _ = _recording_transport(
        lambda request: httpx.Response(200, json={"result": {"data": {"txn_status": txn_status}}})
    )
    client = NetsClient(transport=transport)
    try:
        result = await client.query_intent("NETS-REF-1")
    finally:
        await client.aclose()
    assert result.status == expected


@pytest.mark.asyncio
async def test_capture_requires_paid_status(nets_credentials):
    transport, _ = _recording_transport(
        lambda request: httpx.Response(200, json={"result": {"data": {"txn_status": 1}}})
    )
    client = NetsClient(transport=transport)
    try:
        with pytest.raises(PaymentNotCompletedError):
            await client.capture_intent("NETS-REF-1")
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_any_request(monkeypatch):
    monkeypatch.setattr(payment_settings.nets, "api_key", None)
    monkeypatch.setattr(payment_settings.nets, "project_id", "nets-project")
    transport, requests = _recording_transport(lambda request: httpx.Response(200, json={}))
    client = NetsClient(transport=transport)

    with pytest.raises(GatewayUnavailableError) as exc:
        await client.query_intent("NETS-REF-1")

    assert exc.value.reason == "misconfigured"
    assert requests == []
