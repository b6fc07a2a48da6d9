"""购物车仓储接口"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from .entity import Cart, CartItem


class CartRepository(ABC):

    @abstractmethod
    async def get_cart(self, account_id: int) -> Cart:
        pass

    @abstractmethod
    async def get_item(self, account_id: int, product_id: int) -> Optional[CartItem]:
        pass

    @abstractmethod
    async def set_quantity(
        self, account_id: int, product_id: int, *, quantity: int, name: str, unit_price: Decimal
    ) -> CartItem:
        """插入或更新购物车行"""

    @abstractmethod
    async def remove(self, account_id: int, product_id: int) -> bool:
        pass

    @abstractmethod
    async def clear(self, account_id: int) -> int:
        """清空购物车，返回删除行数"""
