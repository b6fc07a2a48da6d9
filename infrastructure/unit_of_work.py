"""SQLAlchemy Unit of Work：一个会话 + 一个事务，挂载结账涉及的全部仓储"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.account_repository import (
    SQLAlchemyPromoCodeRepository,
    SQLAlchemySubscriptionRepository,
    SQLAlchemyWalletRepository,
)
from infrastructure.repositories.cart_repository import (
    SQLAlchemyCartRepository,
    SQLAlchemyProductRepository,
)
from infrastructure.repositories.ledger_repository import SQLAlchemyLedgerRepository
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    写操作：进入时 BEGIN，正常退出提交，异常回滚。
    只读（readonly=True）：不显式开启事务，退出时不提交。
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.orders = SQLAlchemyOrderRepository(self.session)
        self.ledger = SQLAlchemyLedgerRepository(self.session)
        self.carts = SQLAlchemyCartRepository(self.session)
        self.products = SQLAlchemyProductRepository(self.session)
        self.subscriptions = SQLAlchemySubscriptionRepository(self.session)
        self.promos = SQLAlchemyPromoCodeRepository(self.session)
        self.wallets = SQLAlchemyWalletRepository(self.session)
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self.session is not None:
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if not self._readonly and self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
