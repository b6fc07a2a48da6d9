"""
Payment DTOs (Pydantic v2) used at application boundaries.

Gateway adapters speak only these models; internal intent status is one of
PENDING / PAID / FAILED (see shared.codes.payment_codes).
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.types import condecimal

# Common ISO-4217 currencies (extend as needed)
ISO_4217 = {
    "USD", "EUR", "GBP", "CNY", "JPY", "KRW", "HKD", "AUD", "CAD", "SGD",
}

IntentStatus = Literal["PENDING", "PAID", "FAILED"]


class GatewayLineItem(BaseModel):
    """网关回显的行项目（仅用于在购物车与快照都丢失时重建订单）"""

    product_id: int
    name: str = ""
    unit_price: Decimal
    quantity: int = Field(ge=1)


class CreateIntent(BaseModel):
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str = Field(default="SGD")
    reference: str
    items: list[GatewayLineItem] = Field(default_factory=list)
    idempotency_key: Optional[str] = None
    description: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        if u not in ISO_4217:
            raise ValueError("unsupported currency")
        return u


class IntentResult(BaseModel):
    provider: str
    provider_ref: str
    status: IntentStatus = "PENDING"
    client_params: dict[str, Any] = Field(default_factory=dict)


class CaptureResult(BaseModel):
    provider: str
    provider_ref: str
    status: IntentStatus
    payer_id: Optional[str] = None
    payer_email: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    captured_at: Optional[datetime] = None
    capture_id: Optional[str] = None
    items: list[GatewayLineItem] = Field(default_factory=list)


class QueryResult(BaseModel):
    provider: str
    provider_ref: str
    status: IntentStatus
    provider_status: Optional[str] = None


class RefundRequest(BaseModel):
    ref: str  # capture id, else intent/payment reference
    amount: Optional[condecimal(gt=0)] = None  # type: ignore[valid-type]
    currency: str = Field(default="SGD")
    reason: Optional[str] = None
    idempotency_key: str


class RefundResult(BaseModel):
    refund_id: str
    status: str
    provider: str
    provider_ref: Optional[str] = None


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    # 归一化后的支付结果；与支付结果无关的事件为 None
    provider_ref: Optional[str] = None
    status: Optional[IntentStatus] = None
    # raw fields for traceability (optional)
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)
