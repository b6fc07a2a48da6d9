"""Wallet repository interface."""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List

from .entity import WalletEntry


class WalletRepository(ABC):

    @abstractmethod
    async def credit(self, entry: WalletEntry) -> Decimal:
        """追加流水并累加余额，返回新余额"""

    @abstractmethod
    async def get_balance(self, account_id: int) -> Decimal:
        pass

    @abstractmethod
    async def list_entries(self, account_id: int, limit: int = 50) -> List[WalletEntry]:
        pass
