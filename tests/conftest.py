"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os
import tempfile
from decimal import Decimal
from functools import partial

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ["DEBUG"] = "false"
os.environ["DATABASE__URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "checkout_core_test.db")
os.environ["CHECKOUT__POLL_BACKOFF_SECONDS"] = "0"
os.environ.pop("REDIS__URL", None)

import pytest
import pytest_asyncio

from domain.catalog.entity import Product
from domain.subscription.entity import SubscriptionPlan
from domain.subscription.service import SubscriptionLedger
from infrastructure.cache.pending_registry import InMemoryPendingRegistry
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@pytest_asyncio.fixture
async def uow_factory(tmp_path):
    """每个测试一个独立的 SQLite 文件库；并发测试需要真实文件而非内存库"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}")
    await create_tables(engine)
    try:
        yield partial(SQLAlchemyUnitOfWork, build_session_factory(engine))
    finally:
        await engine.dispose()


@pytest.fixture
def registry():
    return InMemoryPendingRegistry(ttl_seconds=600)


@pytest.fixture
def seed_cart(uow_factory):
    """写入商品并放进购物车；返回商品ID列表。库存按购物车已预留处理"""

    async def _seed(account_id: int, lines: list[tuple[str, str, int]], *, stock: int = 10) -> list[int]:
        product_ids = []
        async with uow_factory() as uow:
            for name, price, quantity in lines:
                product = await uow.products.add(Product(None, name, Decimal(price), stock))
                await uow.carts.set_quantity(
                    account_id,
                    product.id,
                    quantity=quantity,
                    name=product.name,
                    unit_price=product.price,
                )
                product_ids.append(product.id)
        return product_ids

    return _seed


@pytest.fixture
def subscribe(uow_factory):
    """不经过网关直接写入一条生效中的订阅"""

    async def _subscribe(account_id: int, plan: SubscriptionPlan):
        async with uow_factory() as uow:
            return await SubscriptionLedger(uow.subscriptions).subscribe(account_id, plan)

    return _subscribe
