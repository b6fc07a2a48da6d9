"""
Checkout DTOs (Pydantic v2): quotes, pending intents and finalize results.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Literal

from pydantic import BaseModel, Field

from domain.order.entity import DeliveryMeta, DeliveryType, LineItem


class CartLine(BaseModel):
    product_id: int
    name: str = ""
    unit_price: Decimal
    quantity: int = Field(ge=1)

    @classmethod
    def from_line_item(cls, item: LineItem) -> "CartLine":
        return cls(product_id=item.product_id, name=item.name, unit_price=item.unit_price, quantity=item.quantity)

    def to_line_item(self) -> LineItem:
        return LineItem(product_id=self.product_id, name=self.name, unit_price=self.unit_price, quantity=self.quantity)


class DeliveryRequest(BaseModel):
    delivery_type: DeliveryType = DeliveryType.NOW
    scheduled_at: Optional[str] = None


class Quote(BaseModel):
    """结账报价：小计、会员权益、优惠码与配送窗口"""

    items: list[CartLine]
    subtotal: Decimal
    delivery_fee: Decimal
    benefit_discount: Decimal
    plan: Optional[str] = None
    promo_code: Optional[str] = None
    promo_discount: Decimal = Decimal("0.00")
    promo_message: str = ""
    total: Decimal
    currency: str
    delivery_type: DeliveryType = DeliveryType.NOW
    scheduled_at: Optional[datetime] = None
    eta_min: Optional[int] = None
    eta_max: Optional[int] = None


class PendingIntent(BaseModel):
    """(account, provider) -> 待确认的支付意图快照；后写覆盖前写"""

    account_id: int
    provider: str
    provider_ref: str
    purpose: Literal["order", "subscription"] = "order"
    items: list[CartLine] = Field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    delivery_fee: Decimal = Decimal("0.00")
    benefit_discount: Decimal = Decimal("0.00")
    promo_code: Optional[str] = None
    promo_discount: Decimal = Decimal("0.00")
    total: Decimal
    currency: str = "SGD"
    delivery_type: DeliveryType = DeliveryType.NOW
    scheduled_at: Optional[datetime] = None
    eta_min: Optional[int] = None
    eta_max: Optional[int] = None
    plan: Optional[str] = None
    order_id: Optional[int] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def delivery_meta(self) -> DeliveryMeta:
        return DeliveryMeta(
            delivery_type=self.delivery_type,
            scheduled_at=self.scheduled_at,
            eta_min=self.eta_min,
            eta_max=self.eta_max,
            promo_code=self.promo_code,
            promo_discount=self.promo_discount,
            delivery_fee=self.delivery_fee,
            benefit_discount=self.benefit_discount,
        )

    def line_items(self) -> list[LineItem]:
        return [i.to_line_item() for i in self.items]


class FinalizeOutcome(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DUPLICATE_NOOP = "DUPLICATE_NOOP"


class FinalizeResult(BaseModel):
    order_id: int
    outcome: FinalizeOutcome

    @property
    def is_new(self) -> bool:
        return self.outcome != FinalizeOutcome.DUPLICATE_NOOP


class CheckoutStatus(BaseModel):
    provider: str
    provider_ref: str
    status: Literal["PENDING", "PAID", "FAILED"]
    order_id: Optional[int] = None
    outcome: Optional[FinalizeOutcome] = None
    extra: dict[str, Any] = Field(default_factory=dict)
