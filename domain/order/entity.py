"""
订单领域实体 - 订单聚合根

订单是一次成功结账的持久化事实来源：
1. (payment_method, payment_reference) 唯一，作为幂等键
2. 行项目是下单时的不可变快照
3. 只能从 PAID / PARTIAL_REFUND 进入退款状态
4. 永不删除
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from domain.common.exceptions import DomainValidationException, RefundNotAllowedException
from domain.common.money import ZERO, money


class PaymentStatus(str, Enum):
    """订单支付状态"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    REFUNDED = "REFUNDED"


# 尚未确认收款的状态；迟到的确认仍可把它们推进到 PAID
UNPAID_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.CANCELLED,
    PaymentStatus.FAILED,
)
SETTLED_STATUSES = (
    PaymentStatus.PAID,
    PaymentStatus.PARTIAL_REFUND,
    PaymentStatus.REFUNDED,
)
EXPIRABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


class PaymentMethod(str, Enum):
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    NETS = "NETS"

    @classmethod
    def from_provider(cls, provider: str) -> "PaymentMethod":
        try:
            return cls(provider.strip().upper())
        except ValueError:
            raise DomainValidationException(
                f"Unsupported payment provider: {provider}", field="provider"
            ) from None

    @property
    def provider(self) -> str:
        return self.value.lower()


class RefundStatus(str, Enum):
    NONE = "NONE"
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RefundMode(str, Enum):
    """LIVE 调用网关退款；MANUAL 只记账并退入钱包"""
    LIVE = "LIVE"
    MANUAL = "MANUAL"


class DeliveryType(str, Enum):
    NOW = "NOW"
    SCHEDULED = "SCHEDULED"


class DeliveryStatus(str, Enum):
    PREPARING = "PREPARING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class LineItem:
    """下单时的商品快照"""
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int

    def __post_init__(self):
        if self.quantity < 1:
            raise DomainValidationException("quantity must be at least 1", field="quantity")
        object.__setattr__(self, "unit_price", money(self.unit_price))

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            product_id=int(data["product_id"]),
            name=str(data.get("name") or ""),
            unit_price=Decimal(str(data["unit_price"])),
            quantity=int(data["quantity"]),
        )


def items_total(items: Iterable[LineItem]) -> Decimal:
    return money(sum((i.line_total for i in items), ZERO))


@dataclass
class DeliveryMeta:
    """结账时确定的配送/优惠信息，随确认一起写入订单"""
    delivery_type: DeliveryType = DeliveryType.NOW
    scheduled_at: Optional[datetime] = None
    eta_min: Optional[int] = None
    eta_max: Optional[int] = None
    promo_code: Optional[str] = None
    promo_discount: Decimal = ZERO
    delivery_fee: Decimal = ZERO
    benefit_discount: Decimal = ZERO

    def __post_init__(self):
        self.scheduled_at = _ensure_utc(self.scheduled_at)
        self.promo_discount = money(self.promo_discount or 0)
        self.delivery_fee = money(self.delivery_fee or 0)
        self.benefit_discount = money(self.benefit_discount or 0)


@dataclass
class Order:
    id: Optional[int]
    account_id: int
    payment_method: PaymentMethod
    payment_reference: str
    total_amount: Decimal
    currency: str = "SGD"
    payment_status: PaymentStatus = PaymentStatus.PENDING
    items: list[LineItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    delivery_fee: Decimal = ZERO
    benefit_discount: Decimal = ZERO
    promo_code: Optional[str] = None
    promo_discount: Decimal = ZERO
    payer_email: Optional[str] = None
    paid_at: Optional[datetime] = None

    delivery_type: DeliveryType = DeliveryType.NOW
    scheduled_at: Optional[datetime] = None
    eta_min: Optional[int] = None
    eta_max: Optional[int] = None
    delivery_status: DeliveryStatus = DeliveryStatus.PREPARING

    refund_status: RefundStatus = RefundStatus.NONE
    refund_reason: Optional[str] = None
    refund_requested_at: Optional[datetime] = None
    refund_reviewed_at: Optional[datetime] = None
    refunded_amount: Decimal = ZERO

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.payment_reference:
            raise DomainValidationException("payment_reference is required", field="payment_reference")
        self.total_amount = money(self.total_amount)
        if self.total_amount < 0:
            raise DomainValidationException(
                f"total_amount must not be negative: {self.total_amount}", field="total_amount"
            )
        self.subtotal = money(self.subtotal)
        self.refunded_amount = money(self.refunded_amount or 0)
        self.paid_at = _ensure_utc(self.paid_at)
        self.scheduled_at = _ensure_utc(self.scheduled_at)
        self.refund_requested_at = _ensure_utc(self.refund_requested_at)
        self.refund_reviewed_at = _ensure_utc(self.refund_reviewed_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @classmethod
    def new(
        cls,
        *,
        account_id: int,
        method: PaymentMethod,
        reference: str,
        items: list[LineItem],
        total_amount: Decimal,
        currency: str,
        status: PaymentStatus,
        meta: Optional[DeliveryMeta] = None,
        payer_email: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "Order":
        meta = meta or DeliveryMeta()
        now = now or datetime.now(timezone.utc)
        return cls(
            id=None,
            account_id=account_id,
            payment_method=method,
            payment_reference=reference,
            total_amount=total_amount,
            currency=currency,
            payment_status=status,
            items=list(items),
            subtotal=items_total(items),
            delivery_fee=meta.delivery_fee,
            benefit_discount=meta.benefit_discount,
            promo_code=meta.promo_code,
            promo_discount=meta.promo_discount,
            payer_email=payer_email,
            paid_at=paid_at,
            delivery_type=meta.delivery_type,
            scheduled_at=meta.scheduled_at,
            eta_min=meta.eta_min,
            eta_max=meta.eta_max,
            created_at=now,
            updated_at=now,
        )

    # ---- 查询 ----

    @property
    def is_settled(self) -> bool:
        return self.payment_status in SETTLED_STATUSES

    @property
    def refundable_balance(self) -> Decimal:
        return money(max(self.total_amount - self.refunded_amount, ZERO))

    def items_total(self) -> Decimal:
        return items_total(self.items)

    # ---- 退款规则 ----

    def ensure_refund_requestable(
        self,
        *,
        now: datetime,
        window_days: int,
        refundable_methods: Iterable[str],
    ) -> None:
        """校验客户能否发起退款申请（状态、支付方式、7 天窗口、剩余可退金额）"""
        if self.payment_status not in (PaymentStatus.PAID, PaymentStatus.PARTIAL_REFUND):
            raise RefundNotAllowedException(
                "Only paid orders can be refunded", order_id=self.id
            )
        if self.payment_method.value not in {m.upper() for m in refundable_methods}:
            raise RefundNotAllowedException(
                "This payment method does not support refunds", order_id=self.id
            )
        placed_at = self.created_at or now
        if now - placed_at > timedelta(days=window_days):
            raise RefundNotAllowedException(
                f"Refunds are only available within {window_days} days of purchase",
                order_id=self.id,
            )
        if self.refundable_balance <= ZERO:
            raise RefundNotAllowedException("Order has already been fully refunded", order_id=self.id)

    def has_pending_refund(self, latest_transaction_status: Optional[str]) -> bool:
        return (
            self.refund_status == RefundStatus.REQUESTED
            or latest_transaction_status == "REFUND_REQUESTED"
        )

    def compute_refund_amount(self, *, partial: bool = False, override: Optional[Decimal] = None) -> Decimal:
        """部分退款为总额一半，否则全额；显式金额优先；不超过剩余可退金额"""
        if override is not None and override > 0:
            amount = money(override)
        elif partial:
            amount = money(self.total_amount / 2)
        else:
            amount = self.total_amount
        return min(amount, self.refundable_balance)

    def status_after_refund(self, amount: Decimal) -> PaymentStatus:
        refunded = money(self.refunded_amount + amount)
        if refunded >= self.total_amount:
            return PaymentStatus.REFUNDED
        return PaymentStatus.PARTIAL_REFUND
