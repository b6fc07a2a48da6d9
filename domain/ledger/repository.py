"""Ledger repository interface (append-only)."""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import LedgerTransaction


class LedgerRepository(ABC):

    @abstractmethod
    async def append(self, txn: LedgerTransaction) -> LedgerTransaction:
        pass

    @abstractmethod
    async def latest_for_order(self, order_id: int) -> Optional[LedgerTransaction]:
        pass

    @abstractmethod
    async def latest_for_orders(self, order_ids: List[int]) -> dict[int, LedgerTransaction]:
        pass

    @abstractmethod
    async def list_for_order(self, order_id: int) -> List[LedgerTransaction]:
        pass

    @abstractmethod
    async def find_capture_id(self, order_id: int) -> Optional[str]:
        """最近一次收款记录上的渠道 capture id"""

    @abstractmethod
    async def captured_with_unpaid_order(self, limit: int = 500) -> List[LedgerTransaction]:
        """COMPLETED/PAID 交易，其订单仍处于未支付状态"""
