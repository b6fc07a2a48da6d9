"""
账本仓储实现（只追加）
"""
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.ledger.entity import CAPTURED_STATUSES, LedgerTransaction, TransactionStatus
from domain.ledger.repository import LedgerRepository
from domain.order.entity import UNPAID_STATUSES
from infrastructure.models.order import OrderModel
from infrastructure.models.transaction import TransactionModel


logger = get_logger(__name__)


class SQLAlchemyLedgerRepository(LedgerRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> LedgerTransaction:
        return LedgerTransaction(
            id=model.id,
            order_id=model.order_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=TransactionStatus(model.status),
            payment_method=model.payment_method,
            payment_reference=model.payment_reference,
            payer_id=model.payer_id,
            payer_email=model.payer_email,
            capture_id=model.capture_id,
            refund_id=model.refund_id,
            refund_note=model.refund_note,
            created_at=model.created_at,
        )

    def _to_model(self, entity: LedgerTransaction) -> TransactionModel:
        return TransactionModel(
            order_id=entity.order_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            payment_method=entity.payment_method,
            payment_reference=entity.payment_reference,
            payer_id=entity.payer_id,
            payer_email=entity.payer_email,
            capture_id=entity.capture_id,
            refund_id=entity.refund_id,
            refund_note=entity.refund_note,
            created_at=entity.created_at,
        )

    async def append(self, txn: LedgerTransaction) -> LedgerTransaction:
        db_txn = self._to_model(txn)
        self.session.add(db_txn)
        await self.session.flush()
        logger.info(
            "ledger_appended",
            order_id=db_txn.order_id,
            txn_id=db_txn.id,
            status=db_txn.status,
            amount=str(db_txn.amount),
        )
        return self._to_entity(db_txn)

    async def latest_for_order(self, order_id: int) -> Optional[LedgerTransaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.order_id == order_id)
            .order_by(TransactionModel.id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return self._to_entity(row) if row else None

    async def latest_for_orders(self, order_ids: List[int]) -> dict[int, LedgerTransaction]:
        if not order_ids:
            return {}
        latest_ids = (
            select(func.max(TransactionModel.id))
            .where(TransactionModel.order_id.in_(order_ids))
            .group_by(TransactionModel.order_id)
        )
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id.in_(latest_ids))
        )
        return {row.order_id: self._to_entity(row) for row in result.scalars().all()}

    async def list_for_order(self, order_id: int) -> List[LedgerTransaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.order_id == order_id)
            .order_by(TransactionModel.id.asc())
        )
        return [self._to_entity(row) for row in result.scalars().all()]

    async def find_capture_id(self, order_id: int) -> Optional[str]:
        result = await self.session.execute(
            select(TransactionModel.capture_id)
            .where(
                TransactionModel.order_id == order_id,
                TransactionModel.status.in_([s.value for s in CAPTURED_STATUSES]),
                TransactionModel.capture_id.is_not(None),
            )
            .order_by(TransactionModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def captured_with_unpaid_order(self, limit: int = 500) -> List[LedgerTransaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .join(OrderModel, OrderModel.id == TransactionModel.order_id)
            .where(
                TransactionModel.status.in_([s.value for s in CAPTURED_STATUSES]),
                OrderModel.payment_status.in_([s.value for s in UNPAID_STATUSES]),
            )
            .order_by(TransactionModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(row) for row in result.scalars().all()]
