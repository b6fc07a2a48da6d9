from decimal import Decimal

import pytest

from application.services.cart_service import CartService
from domain.catalog.entity import Product
from domain.common.exceptions import (
    DomainValidationException,
    InsufficientStockException,
    ProductNotFoundException,
)


ACCOUNT = 41


async def _product(uow_factory, stock: int = 5) -> int:
    async with uow_factory() as uow:
        product = await uow.products.add(Product(None, "Yoghurt", Decimal("2.40"), stock))
    return product.id


async def _stock(uow_factory, product_id: int) -> int:
    async with uow_factory(readonly=True) as uow:
        return (await uow.products.get(product_id)).stock_qty


@pytest.mark.asyncio
async def test_add_reserves_stock_and_clamps(uow_factory):
    product_id = await _product(uow_factory)
    service = CartService(uow_factory)

    cart = await service.add(ACCOUNT, product_id, 3)
    assert cart.quantity_of(product_id) == 3
    assert cart.subtotal() == Decimal("7.20")
    assert await _stock(uow_factory, product_id) == 2

    cart = await service.add(ACCOUNT, product_id, 5)
    assert cart.quantity_of(product_id) == 5
    assert await _stock(uow_factory, product_id) == 0

    with pytest.raises(InsufficientStockException):
        await service.add(ACCOUNT, product_id, 1)


@pytest.mark.asyncio
async def test_update_and_remove_release_stock(uow_factory):
    product_id = await _product(uow_factory)
    service = CartService(uow_factory)
    await service.add(ACCOUNT, product_id, 4)

    cart = await service.update(ACCOUNT, product_id, 2)
    assert cart.quantity_of(product_id) == 2
    assert await _stock(uow_factory, product_id) == 3

    cart = await service.update(ACCOUNT, product_id, 0)
    assert cart.is_empty
    assert await _stock(uow_factory, product_id) == 5
    assert await service.remove(ACCOUNT, product_id) is False


@pytest.mark.asyncio
async def test_empty_cart_returns_everything(uow_factory):
    first = await _product(uow_factory)
    second = await _product(uow_factory, stock=2)
    service = CartService(uow_factory)
    await service.add(ACCOUNT, first, 2)
    await service.add(ACCOUNT, second, 2)

    assert await service.empty(ACCOUNT) == 2
    assert (await service.get_cart(ACCOUNT)).is_empty
    assert await _stock(uow_factory, first) == 5
    assert await _stock(uow_factory, second) == 2


@pytest.mark.asyncio
async def test_invalid_requests(uow_factory):
    service = CartService(uow_factory)
    with pytest.raises(ProductNotFoundException):
        await service.add(ACCOUNT, 999, 1)
    product_id = await _product(uow_factory)
    with pytest.raises(DomainValidationException):
        await service.add(ACCOUNT, product_id, 0)
