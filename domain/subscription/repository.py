"""订阅仓储接口"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Subscription


class SubscriptionRepository(ABC):

    @abstractmethod
    async def get_current(self, account_id: int) -> Optional[Subscription]:
        """最新一条订阅（按 id 倒序）"""

    @abstractmethod
    async def add(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    async def update(self, subscription: Subscription) -> Subscription:
        pass
