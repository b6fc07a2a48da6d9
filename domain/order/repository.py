"""
订单仓储接口 - 定义订单数据访问的抽象接口

所有状态推进都是条件写（compare-and-set），返回是否命中，
调用方据此区分"我赢了"与"别人已经处理"。
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from .entity import (
    DeliveryMeta,
    DeliveryStatus,
    Order,
    PaymentMethod,
    PaymentStatus,
)


class OrderRepository(ABC):

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """插入订单及行项目；幂等键冲突时回滚并抛出 DuplicatePaymentReferenceException"""

    @abstractmethod
    async def get(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_for_account(self, order_id: int, account_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_reference(self, method: PaymentMethod, reference: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def mark_paid_if_unpaid(
        self,
        order_id: int,
        *,
        paid_at: datetime,
        payer_email: Optional[str],
        meta: Optional[DeliveryMeta] = None,
    ) -> bool:
        """仅当订单仍处于未支付状态时置为 PAID"""

    @abstractmethod
    async def sync_paid_from_ledger(
        self,
        order_id: int,
        *,
        method: Optional[PaymentMethod],
        reference: Optional[str],
        payer_email: Optional[str],
        paid_at: Optional[datetime],
    ) -> bool:
        """对账写入：PAID + 仅填充为空的字段（COALESCE）"""

    @abstractmethod
    async def expire_stale(self, cutoff: datetime, now: datetime) -> int:
        """把早于 cutoff 的 PENDING/PROCESSING 订单置为 CANCELLED，返回影响行数"""

    @abstractmethod
    async def mark_failed_if_pending(self, order_id: int, now: datetime) -> bool:
        """网关明确失败：仅当订单仍为 PENDING/PROCESSING 时置为 FAILED"""

    @abstractmethod
    async def list_for_account(self, account_id: int, skip: int = 0, limit: int = 20) -> List[Order]:
        pass

    @abstractmethod
    async def count_for_account(self, account_id: int) -> int:
        pass

    @abstractmethod
    async def list_all(
        self, skip: int = 0, limit: int = 20, status: Optional[PaymentStatus] = None
    ) -> List[Order]:
        pass

    @abstractmethod
    async def count_all(self, status: Optional[PaymentStatus] = None) -> int:
        pass

    @abstractmethod
    async def stats_for_account(self, account_id: int) -> tuple[int, Decimal]:
        """已支付订单数与消费总额"""

    @abstractmethod
    async def claim_refund_request(self, order_id: int, *, reason: str, now: datetime) -> bool:
        """refund_status != REQUESTED 且订单已支付时置为 REQUESTED"""

    @abstractmethod
    async def resolve_refund_request(
        self,
        order_id: int,
        *,
        approved: bool,
        now: datetime,
        refund_amount: Decimal = Decimal("0"),
        new_status: Optional[PaymentStatus] = None,
    ) -> bool:
        """写入时重新校验 refund_status = REQUESTED"""

    @abstractmethod
    async def update_delivery_status(self, order_id: int, status: DeliveryStatus) -> bool:
        pass
