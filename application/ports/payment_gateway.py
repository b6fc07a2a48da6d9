"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from application.dtos.payments import (
    CaptureResult,
    CreateIntent,
    IntentResult,
    QueryResult,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations should be async and side-effect free beyond IO.
    Missing credentials must surface as GatewayUnavailableError before
    any network call is attempted.
    """

    provider: str
    # direct-capture flows persist a PENDING order as soon as the intent exists
    eager_order: bool

    async def create_intent(self, req: CreateIntent) -> IntentResult: ...

    async def capture_intent(self, provider_ref: str) -> CaptureResult: ...

    async def query_intent(self, provider_ref: str) -> QueryResult: ...

    async def refund(self, req: RefundRequest) -> RefundResult: ...

    async def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...

    async def aclose(self) -> None: ...
