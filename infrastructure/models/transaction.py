"""
账本交易模型（只追加，不更新）
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, Index
from datetime import datetime, timezone

from .base import Base


class TransactionModel(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, nullable=False, index=True, comment="订单ID")
    payer_id = Column(String(255), nullable=True, comment="网关付款人ID")
    payer_email = Column(String(255), nullable=True, comment="付款人邮箱")
    amount = Column(Numeric(precision=12, scale=2), nullable=False, comment="金额")
    currency = Column(String(3), nullable=False, default="SGD", comment="货币代码")
    status = Column(
        String(30),
        nullable=False,
        index=True,
        comment="COMPLETED/PAID/REFUND_REQUESTED/REFUNDED/REFUND_REJECTED/FAILED"
    )
    payment_method = Column(String(20), nullable=True, comment="支付方式")
    payment_reference = Column(String(255), nullable=True, comment="网关交易/意图ID")
    capture_id = Column(String(255), nullable=True, comment="渠道收款ID（退款使用）")
    refund_id = Column(String(255), nullable=True, comment="渠道退款ID")
    refund_note = Column(Text, nullable=True, comment="退款备注")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="记录时间"
    )

    __table_args__ = (
        Index("ix_transactions_order_id_id", "order_id", "id"),
    )
