"""Catalog/stock repository interface."""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Product


class ProductRepository(ABC):

    @abstractmethod
    async def add(self, product: Product) -> Product:
        pass

    @abstractmethod
    async def get(self, product_id: int) -> Optional[Product]:
        pass

    @abstractmethod
    async def adjust_stock(self, product_id: int, delta: int) -> bool:
        """delta < 0 预留库存（仅当库存足够时生效），delta > 0 归还库存"""
