"""
购物车应用服务

库存在购物车变更时预留：加入/增加数量扣减库存，减少/移除归还库存。
finalize 只清空购物车，不再调整库存。库存扣减是条件更新（stock_qty >= n）。
"""
from __future__ import annotations

from typing import Callable

from core.logging_config import get_logger
from domain.cart.entity import Cart
from domain.common.exceptions import (
    DomainValidationException,
    InsufficientStockException,
    ProductNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


class CartService:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def get_cart(self, account_id: int) -> Cart:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.carts.get_cart(account_id)

    async def add(self, account_id: int, product_id: int, quantity: int = 1) -> Cart:
        """加入购物车；数量上限为现有数量加上当前可售库存"""
        if quantity < 1:
            raise DomainValidationException("quantity must be at least 1", field="quantity")
        async with self._uow_factory() as uow:
            product = await uow.products.get(product_id)
            if product is None:
                raise ProductNotFoundException(product_id)
            current = await uow.carts.get_item(account_id, product_id)
            current_qty = current.quantity if current else 0
            delta = min(quantity, product.stock_qty)
            if delta <= 0 or not await uow.products.adjust_stock(product_id, -delta):
                raise InsufficientStockException(product_id, available=product.stock_qty)
            await uow.carts.set_quantity(
                account_id,
                product_id,
                quantity=current_qty + delta,
                name=product.name,
                unit_price=current.unit_price if current else product.price,
            )
            if delta < quantity:
                logger.info("cart_quantity_clamped", account_id=account_id, product_id=product_id, requested=quantity, added=delta)
            return await uow.carts.get_cart(account_id)

    async def update(self, account_id: int, product_id: int, quantity: int) -> Cart:
        """设置数量；<= 0 视为移除"""
        if quantity <= 0:
            await self.remove(account_id, product_id)
            return await self.get_cart(account_id)
        async with self._uow_factory() as uow:
            product = await uow.products.get(product_id)
            if product is None:
                raise ProductNotFoundException(product_id)
            current = await uow.carts.get_item(account_id, product_id)
            current_qty = current.quantity if current else 0
            delta = quantity - current_qty
            if delta > 0:
                delta = min(delta, product.stock_qty)
                if delta == 0 and current is None:
                    raise InsufficientStockException(product_id, available=product.stock_qty)
                if delta > 0 and not await uow.products.adjust_stock(product_id, -delta):
                    raise InsufficientStockException(product_id, available=product.stock_qty)
            elif delta < 0:
                await uow.products.adjust_stock(product_id, -delta)
            if delta != 0:
                await uow.carts.set_quantity(
                    account_id,
                    product_id,
                    quantity=current_qty + delta,
                    name=product.name,
                    unit_price=current.unit_price if current else product.price,
                )
            return await uow.carts.get_cart(account_id)

    async def remove(self, account_id: int, product_id: int) -> bool:
        async with self._uow_factory() as uow:
            item = await uow.carts.get_item(account_id, product_id)
            if item is None:
                return False
            await uow.carts.remove(account_id, product_id)
            await uow.products.adjust_stock(product_id, item.quantity)
        logger.info("cart_item_removed", account_id=account_id, product_id=product_id, released=item.quantity)
        return True

    async def empty(self, account_id: int) -> int:
        """用户主动清空购物车：归还全部预留库存"""
        async with self._uow_factory() as uow:
            cart = await uow.carts.get_cart(account_id)
            for item in cart.items:
                await uow.products.adjust_stock(item.product_id, item.quantity)
            return await uow.carts.clear(account_id)
