"""
商品/购物车/优惠码模型
"""
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Index, Integer, Numeric, String,
)
from datetime import datetime, timezone

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, comment="商品名称")
    price = Column(Numeric(precision=12, scale=2), nullable=False, comment="单价")
    stock_qty = Column(Integer, nullable=False, default=0, comment="可售库存（已扣除购物车预留）")

    __table_args__ = (
        CheckConstraint("stock_qty >= 0", name="ck_products_stock_non_negative"),
    )


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, comment="账户ID")
    product_id = Column(Integer, nullable=False, comment="商品ID")
    name = Column(String(255), nullable=False, default="", comment="商品名称")
    unit_price = Column(Numeric(precision=12, scale=2), nullable=False, comment="加入时单价")
    quantity = Column(Integer, nullable=False, comment="数量")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("uq_cart_items_account_product", "account_id", "product_id", unique=True),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )


class PromoCodeModel(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True, comment="优惠码（大写）")
    percent_off = Column(Numeric(precision=5, scale=2), nullable=False, comment="折扣百分比")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="过期时间")
    active = Column(Boolean, nullable=False, default=True, comment="是否启用")
