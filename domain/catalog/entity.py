"""Catalog product (only the fields checkout needs)."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from domain.common.money import money


@dataclass
class Product:
    id: Optional[int]
    name: str
    price: Decimal
    stock_qty: int = 0

    def __post_init__(self):
        self.price = money(self.price)
        if self.stock_qty < 0:
            self.stock_qty = 0
