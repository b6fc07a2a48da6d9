"""
购物车与商品库存仓储实现
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.cart.entity import Cart, CartItem
from domain.cart.repository import CartRepository
from domain.catalog.entity import Product
from domain.catalog.repository import ProductRepository
from domain.common.exceptions import BusinessException
from infrastructure.models.catalog import CartItemModel, ProductModel
from shared.codes import BusinessCode


logger = get_logger(__name__)


class SQLAlchemyCartRepository(CartRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CartItemModel) -> CartItem:
        return CartItem(
            account_id=model.account_id,
            product_id=model.product_id,
            name=model.name,
            unit_price=Decimal(str(model.unit_price)),
            quantity=model.quantity,
        )

    async def _get_model(self, account_id: int, product_id: int) -> Optional[CartItemModel]:
        result = await self.session.execute(
            select(CartItemModel).where(
                CartItemModel.account_id == account_id,
                CartItemModel.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_cart(self, account_id: int) -> Cart:
        result = await self.session.execute(
            select(CartItemModel)
            .where(CartItemModel.account_id == account_id)
            .order_by(CartItemModel.id.asc())
        )
        return Cart(account_id=account_id, items=[self._to_entity(m) for m in result.scalars().all()])

    async def get_item(self, account_id: int, product_id: int) -> Optional[CartItem]:
        model = await self._get_model(account_id, product_id)
        return self._to_entity(model) if model else None

    async def set_quantity(
        self, account_id: int, product_id: int, *, quantity: int, name: str, unit_price: Decimal
    ) -> CartItem:
        model = await self._get_model(account_id, product_id)
        if model is None:
            model = CartItemModel(
                account_id=account_id,
                product_id=product_id,
                name=name,
                unit_price=unit_price,
                quantity=quantity,
            )
            self.session.add(model)
        else:
            model.quantity = quantity
            model.name = name
            model.unit_price = unit_price
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            raise BusinessException(
                code=BusinessCode.CONFLICT,
                message="Cart was modified concurrently, please retry",
                error_type="CartConflict",
            ) from e
        return self._to_entity(model)

    async def remove(self, account_id: int, product_id: int) -> bool:
        result = await self.session.execute(
            delete(CartItemModel).where(
                CartItemModel.account_id == account_id,
                CartItemModel.product_id == product_id,
            )
        )
        return result.rowcount == 1

    async def clear(self, account_id: int) -> int:
        result = await self.session.execute(
            delete(CartItemModel).where(CartItemModel.account_id == account_id)
        )
        removed = result.rowcount or 0
        if removed:
            logger.info("cart_cleared", account_id=account_id, removed=removed)
        return removed


class SQLAlchemyProductRepository(ProductRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductModel) -> Product:
        return Product(
            id=model.id,
            name=model.name,
            price=Decimal(str(model.price)),
            stock_qty=model.stock_qty,
        )

    async def add(self, product: Product) -> Product:
        model = ProductModel(name=product.name, price=product.price, stock_qty=product.stock_qty)
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def get(self, product_id: int) -> Optional[Product]:
        result = await self.session.execute(
            select(ProductModel)
            .where(ProductModel.id == product_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def adjust_stock(self, product_id: int, delta: int) -> bool:
        stmt = update(ProductModel).where(ProductModel.id == product_id)
        if delta < 0:
            stmt = stmt.where(ProductModel.stock_qty >= -delta)
        result = await self.session.execute(
            stmt.values(stock_qty=ProductModel.stock_qty + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
