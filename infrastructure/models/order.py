"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    """
    订单数据库模型

    (payment_method, payment_reference) 上的唯一索引是并发 finalize 的互斥点：
    两个并发插入只有一个能成功。
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, index=True, comment="账户ID")

    # 支付信息
    payment_method = Column(String(20), nullable=False, comment="支付方式: STRIPE/PAYPAL/NETS")
    payment_reference = Column(String(255), nullable=False, comment="网关交易/意图ID（幂等键）")
    payment_status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="PENDING/PROCESSING/PAID/FAILED/CANCELLED/PARTIAL_REFUND/REFUNDED"
    )
    payer_email = Column(String(255), nullable=True, comment="付款人邮箱")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    # 金额（Numeric 存储精确金额）
    subtotal = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="行项目合计")
    delivery_fee = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="配送费")
    benefit_discount = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="会员折扣")
    promo_code = Column(String(50), nullable=True, comment="优惠码")
    promo_discount = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="优惠码折扣")
    total_amount = Column(Numeric(precision=12, scale=2), nullable=False, comment="实收金额")
    currency = Column(String(3), nullable=False, default="SGD", comment="货币代码 ISO-4217")

    # 配送
    delivery_type = Column(String(20), nullable=False, default="NOW", comment="NOW/SCHEDULED")
    scheduled_at = Column(DateTime(timezone=True), nullable=True, comment="预约配送时间")
    eta_min = Column(Integer, nullable=True, comment="预计送达下限（分钟）")
    eta_max = Column(Integer, nullable=True, comment="预计送达上限（分钟）")
    delivery_status = Column(String(20), nullable=False, default="PREPARING", comment="PREPARING/OUT_FOR_DELIVERY/DELIVERED")

    # 退款
    refund_status = Column(String(20), nullable=False, default="NONE", index=True, comment="NONE/REQUESTED/APPROVED/REJECTED")
    refund_reason = Column(Text, nullable=True, comment="退款原因")
    refund_requested_at = Column(DateTime(timezone=True), nullable=True, comment="退款申请时间")
    refund_reviewed_at = Column(DateTime(timezone=True), nullable=True, comment="退款审核时间")
    refunded_amount = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="已退款金额")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItemModel.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("uq_orders_payment_ref", "payment_method", "payment_reference", unique=True),
        Index("ix_orders_account_created", "account_id", "created_at"),
        Index("ix_orders_status_created", "payment_status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, account_id={self.account_id}, "
            f"method='{self.payment_method}', ref='{self.payment_reference}', status='{self.payment_status}')>"
        )


class OrderItemModel(Base):
    """订单行项目（下单时的商品快照）"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="订单ID"
    )
    product_id = Column(Integer, nullable=False, comment="商品ID")
    name = Column(String(255), nullable=False, default="", comment="商品名称快照")
    unit_price = Column(Numeric(precision=12, scale=2), nullable=False, comment="单价快照")
    quantity = Column(Integer, nullable=False, comment="数量")

    order = relationship("OrderModel", back_populates="items")
