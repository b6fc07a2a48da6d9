"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_serializer

from core.config import settings
from domain.cart.entity import Cart
from domain.ledger.entity import LedgerTransaction
from domain.order.entity import DeliveryStatus, DeliveryType, Order, RefundMode
from domain.subscription.entity import Subscription, SubscriptionPlan
from domain.wallet.entity import WalletEntry


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class PaginationParams(DTOBase):
    """分页参数（页码/每页大小），自动派生 skip/limit"""
    page: int = Field(1, ge=1, description="页码，从1开始")
    size: int = Field(
        default=settings.DEFAULT_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="每页大小",
    )

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.size

    @property
    def limit(self) -> int:
        return self.size


# ---- 结账 ----

class StartCheckoutDTO(DTOBase):
    promo_code: Optional[str] = Field(None, max_length=64)
    delivery_type: DeliveryType = DeliveryType.NOW
    scheduled_at: Optional[str] = Field(None, description="ISO8601，SCHEDULED 配送时必填")


class CaptureDTO(DTOBase):
    provider_ref: str = Field(..., min_length=1, description="网关订单号 / PaymentIntent id / 交易检索号")


class IntentResponseDTO(DTOBase):
    provider: str
    provider_ref: str
    total: Decimal
    currency: str
    order_id: Optional[int] = None
    client_params: dict = Field(default_factory=dict)


# ---- 购物车 ----

class CartItemAddDTO(DTOBase):
    product_id: int
    quantity: int = Field(1, ge=1)


class CartItemUpdateDTO(DTOBase):
    quantity: int = Field(..., description="<=0 表示移除")


class CartLineDTO(DTOBase):
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class CartResponseDTO(DTOBase):
    items: list[CartLineDTO]
    subtotal: Decimal

    @classmethod
    def from_entity(cls, cart: Cart) -> "CartResponseDTO":
        return cls(
            items=[
                CartLineDTO(
                    product_id=i.product_id,
                    name=i.name,
                    unit_price=i.unit_price,
                    quantity=i.quantity,
                    line_total=i.line_total,
                )
                for i in cart.line_items()
            ],
            subtotal=cart.subtotal(),
        )


# ---- 订单 ----

class OrderItemDTO(DTOBase):
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int


class OrderResponseDTO(DTOBase):
    """订单响应DTO"""
    id: int
    account_id: int
    payment_method: str
    payment_reference: str
    payment_status: str
    total_amount: Decimal
    currency: str
    subtotal: Decimal
    delivery_fee: Decimal
    benefit_discount: Decimal
    promo_code: Optional[str] = None
    promo_discount: Decimal
    payer_email: Optional[str] = None
    paid_at: Optional[datetime] = None
    delivery_type: str
    scheduled_at: Optional[datetime] = None
    eta_min: Optional[int] = None
    eta_max: Optional[int] = None
    delivery_status: str
    refund_status: str
    refund_reason: Optional[str] = None
    refund_requested_at: Optional[datetime] = None
    refund_reviewed_at: Optional[datetime] = None
    refunded_amount: Decimal
    latest_transaction_status: Optional[str] = None
    items: list[OrderItemDTO] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order, latest_status: Optional[str] = None) -> "OrderResponseDTO":
        return cls(
            id=order.id,
            account_id=order.account_id,
            payment_method=order.payment_method.value,
            payment_reference=order.payment_reference,
            payment_status=order.payment_status.value,
            total_amount=order.total_amount,
            currency=order.currency,
            subtotal=order.subtotal,
            delivery_fee=order.delivery_fee,
            benefit_discount=order.benefit_discount,
            promo_code=order.promo_code,
            promo_discount=order.promo_discount,
            payer_email=order.payer_email,
            paid_at=order.paid_at,
            delivery_type=order.delivery_type.value,
            scheduled_at=order.scheduled_at,
            eta_min=order.eta_min,
            eta_max=order.eta_max,
            delivery_status=order.delivery_status.value,
            refund_status=order.refund_status.value,
            refund_reason=order.refund_reason,
            refund_requested_at=order.refund_requested_at,
            refund_reviewed_at=order.refund_reviewed_at,
            refunded_amount=order.refunded_amount,
            latest_transaction_status=latest_status,
            items=[
                OrderItemDTO(product_id=i.product_id, name=i.name, unit_price=i.unit_price, quantity=i.quantity)
                for i in order.items
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class TransactionDTO(DTOBase):
    id: Optional[int] = None
    status: str
    amount: Decimal
    currency: str
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    capture_id: Optional[str] = None
    refund_id: Optional[str] = None
    refund_note: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, txn: LedgerTransaction) -> "TransactionDTO":
        return cls(
            id=txn.id,
            status=txn.status.value,
            amount=txn.amount,
            currency=txn.currency,
            payment_method=txn.payment_method,
            payment_reference=txn.payment_reference,
            capture_id=txn.capture_id,
            refund_id=txn.refund_id,
            refund_note=txn.refund_note,
            created_at=txn.created_at,
        )


class OrderStatsDTO(DTOBase):
    total_orders: int
    total_spent: Decimal


class RefundRequestDTO(DTOBase):
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    def validate_reason(cls, v):
        if not v.strip():
            raise ValueError("退款原因不能为空")
        return v.strip()


class RefundApproveDTO(DTOBase):
    mode: RefundMode = RefundMode.LIVE
    partial: bool = False
    amount: Optional[Decimal] = Field(None, gt=0, description="管理员指定的退款金额，受可退余额限制")


class RefundRejectDTO(DTOBase):
    reason: str = Field(..., min_length=1, max_length=500)


class DeliveryUpdateDTO(DTOBase):
    delivery_status: DeliveryStatus


# ---- 订阅 / 钱包 ----

class SubscriptionCheckoutDTO(DTOBase):
    plan: SubscriptionPlan


class SubscriptionCancelDTO(DTOBase):
    at_period_end: bool = True


class SubscriptionResponseDTO(DTOBase):
    active: bool
    plan: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auto_renew: Optional[bool] = None
    cancel_at_period_end: Optional[bool] = None

    @classmethod
    def from_entity(cls, row: Optional[Subscription], active: bool) -> "SubscriptionResponseDTO":
        if row is None:
            return cls(active=False)
        return cls(
            active=active,
            plan=row.plan.value,
            status=row.status.value,
            start_date=row.start_date,
            end_date=row.end_date,
            auto_renew=row.auto_renew,
            cancel_at_period_end=row.cancel_at_period_end,
        )


class WalletEntryDTO(DTOBase):
    amount: Decimal
    reason: str
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: Optional[datetime] = None


class WalletResponseDTO(DTOBase):
    balance: Decimal
    entries: list[WalletEntryDTO]

    @classmethod
    def from_entities(cls, balance: Decimal, entries: list[WalletEntry]) -> "WalletResponseDTO":
        return cls(
            balance=balance,
            entries=[
                WalletEntryDTO(
                    amount=e.amount,
                    reason=e.reason,
                    reference_type=e.reference_type,
                    reference_id=e.reference_id,
                    created_at=e.created_at,
                )
                for e in entries
            ],
        )
