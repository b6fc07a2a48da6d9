"""
购物车实体

每个账户一辆购物车，(account_id, product_id) 唯一；数量至少为 1。
库存在购物车变更时预留，下单时只清空购物车。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from domain.common.exceptions import DomainValidationException
from domain.common.money import money
from domain.order.entity import LineItem, items_total


@dataclass
class CartItem:
    account_id: int
    product_id: int
    name: str
    unit_price: Decimal
    quantity: int

    def __post_init__(self):
        if self.quantity < 1:
            raise DomainValidationException("quantity must be at least 1", field="quantity")
        self.unit_price = money(self.unit_price)

    def to_line_item(self) -> LineItem:
        return LineItem(
            product_id=self.product_id,
            name=self.name,
            unit_price=self.unit_price,
            quantity=self.quantity,
        )


@dataclass
class Cart:
    account_id: int
    items: list[CartItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def line_items(self) -> list[LineItem]:
        return [i.to_line_item() for i in self.items]

    def subtotal(self) -> Decimal:
        return items_total(self.line_items())

    def quantity_of(self, product_id: int) -> int:
        for item in self.items:
            if item.product_id == product_id:
                return item.quantity
        return 0
