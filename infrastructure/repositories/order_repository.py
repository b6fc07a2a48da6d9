"""
订单仓储实现 - 使用SQLAlchemy实现数据访问

状态推进全部使用带条件的 UPDATE，并以 rowcount 判断是否命中，
保证并发的 finalize / 对账 / 退款审批之间可交换。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import DuplicatePaymentReferenceException
from domain.order.entity import (
    EXPIRABLE_STATUSES,
    UNPAID_STATUSES,
    DeliveryMeta,
    DeliveryStatus,
    DeliveryType,
    LineItem,
    Order,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
)
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel


logger = get_logger(__name__)


def _values(statuses) -> list[str]:
    return [s.value for s in statuses]


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            account_id=model.account_id,
            payment_method=PaymentMethod(model.payment_method),
            payment_reference=model.payment_reference,
            payment_status=PaymentStatus(model.payment_status),
            total_amount=Decimal(str(model.total_amount)),
            currency=model.currency,
            items=[
                LineItem(
                    product_id=i.product_id,
                    name=i.name,
                    unit_price=Decimal(str(i.unit_price)),
                    quantity=i.quantity,
                )
                for i in model.items
            ],
            subtotal=Decimal(str(model.subtotal)),
            delivery_fee=Decimal(str(model.delivery_fee)),
            benefit_discount=Decimal(str(model.benefit_discount)),
            promo_code=model.promo_code,
            promo_discount=Decimal(str(model.promo_discount)),
            payer_email=model.payer_email,
            paid_at=model.paid_at,
            delivery_type=DeliveryType(model.delivery_type),
            scheduled_at=model.scheduled_at,
            eta_min=model.eta_min,
            eta_max=model.eta_max,
            delivery_status=DeliveryStatus(model.delivery_status),
            refund_status=RefundStatus(model.refund_status),
            refund_reason=model.refund_reason,
            refund_requested_at=model.refund_requested_at,
            refund_reviewed_at=model.refund_reviewed_at,
            refunded_amount=Decimal(str(model.refunded_amount)),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        now = datetime.now(timezone.utc)
        return OrderModel(
            account_id=entity.account_id,
            payment_method=entity.payment_method.value,
            payment_reference=entity.payment_reference,
            payment_status=entity.payment_status.value,
            payer_email=entity.payer_email,
            paid_at=entity.paid_at,
            subtotal=entity.subtotal,
            delivery_fee=entity.delivery_fee,
            benefit_discount=entity.benefit_discount,
            promo_code=entity.promo_code,
            promo_discount=entity.promo_discount,
            total_amount=entity.total_amount,
            currency=entity.currency,
            delivery_type=entity.delivery_type.value,
            scheduled_at=entity.scheduled_at,
            eta_min=entity.eta_min,
            eta_max=entity.eta_max,
            delivery_status=entity.delivery_status.value,
            refund_status=entity.refund_status.value,
            refund_reason=entity.refund_reason,
            refund_requested_at=entity.refund_requested_at,
            refund_reviewed_at=entity.refund_reviewed_at,
            refunded_amount=entity.refunded_amount,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
        )

    async def _load(self, *criteria) -> Optional[OrderModel]:
        # populate_existing: 条件 UPDATE 之后重新读取必须拿到数据库中的最新值
        result = await self.session.execute(
            select(OrderModel).where(*criteria).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, order: Order) -> Order:
        """插入订单行；行项目在订单行落库后写入"""
        db_order = self._to_model(order)
        self.session.add(db_order)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            logger.info(
                "order_insert_conflict",
                payment_method=order.payment_method.value,
                payment_reference=order.payment_reference,
            )
            raise DuplicatePaymentReferenceException(order.payment_method.value, order.payment_reference)

        for item in order.items:
            self.session.add(
                OrderItemModel(
                    order_id=db_order.id,
                    product_id=item.product_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                )
            )
        await self.session.flush()
        await self.session.refresh(db_order, attribute_names=["items"])
        logger.info(
            "order_created",
            order_id=db_order.id,
            account_id=db_order.account_id,
            payment_method=db_order.payment_method,
            payment_status=db_order.payment_status,
        )
        return self._to_entity(db_order)

    async def get(self, order_id: int) -> Optional[Order]:
        db_order = await self._load(OrderModel.id == order_id)
        return self._to_entity(db_order) if db_order else None

    async def get_for_account(self, order_id: int, account_id: int) -> Optional[Order]:
        db_order = await self._load(OrderModel.id == order_id, OrderModel.account_id == account_id)
        return self._to_entity(db_order) if db_order else None

    async def get_by_payment_reference(self, method: PaymentMethod, reference: str) -> Optional[Order]:
        db_order = await self._load(
            OrderModel.payment_method == method.value,
            OrderModel.payment_reference == reference,
        )
        return self._to_entity(db_order) if db_order else None

    async def mark_paid_if_unpaid(
        self,
        order_id: int,
        *,
        paid_at: datetime,
        payer_email: Optional[str],
        meta: Optional[DeliveryMeta] = None,
    ) -> bool:
        values = {
            "payment_status": PaymentStatus.PAID.value,
            "paid_at": paid_at,
            "payer_email": func.coalesce(payer_email, OrderModel.payer_email),
            "updated_at": datetime.now(timezone.utc),
        }
        if meta is not None:
            values.update(
                delivery_type=meta.delivery_type.value,
                scheduled_at=meta.scheduled_at,
                eta_min=meta.eta_min,
                eta_max=meta.eta_max,
                promo_code=meta.promo_code,
                promo_discount=meta.promo_discount,
            )
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status.in_(_values(UNPAID_STATUSES)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def sync_paid_from_ledger(
        self,
        order_id: int,
        *,
        method: Optional[PaymentMethod],
        reference: Optional[str],
        payer_email: Optional[str],
        paid_at: Optional[datetime],
    ) -> bool:
        try:
            result = await self.session.execute(
                update(OrderModel)
                .where(
                    OrderModel.id == order_id,
                    OrderModel.payment_status.in_(_values(UNPAID_STATUSES)),
                )
                .values(
                    payment_status=PaymentStatus.PAID.value,
                    payment_method=func.coalesce(OrderModel.payment_method, method.value if method else None),
                    payment_reference=func.coalesce(OrderModel.payment_reference, reference),
                    payer_email=func.coalesce(OrderModel.payer_email, payer_email),
                    paid_at=func.coalesce(OrderModel.paid_at, paid_at),
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            await self.session.rollback()
            raise DuplicatePaymentReferenceException(method.value if method else "", reference or "")
        return result.rowcount == 1

    async def expire_stale(self, cutoff: datetime, now: datetime) -> int:
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.payment_status.in_(_values(EXPIRABLE_STATUSES)),
                OrderModel.created_at < cutoff,
            )
            .values(payment_status=PaymentStatus.CANCELLED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def mark_failed_if_pending(self, order_id: int, now: datetime) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status.in_(_values(EXPIRABLE_STATUSES)),
            )
            .values(payment_status=PaymentStatus.FAILED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_for_account(self, account_id: int, skip: int = 0, limit: int = 20) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.account_id == account_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(o) for o in result.scalars().all()]

    async def count_for_account(self, account_id: int) -> int:
        result = await self.session.execute(
            select(func.count(OrderModel.id)).where(OrderModel.account_id == account_id)
        )
        return result.scalar_one()

    async def list_all(
        self, skip: int = 0, limit: int = 20, status: Optional[PaymentStatus] = None
    ) -> List[Order]:
        query = select(OrderModel)
        if status:
            query = query.where(OrderModel.payment_status == status.value)
        query = query.order_by(OrderModel.created_at.desc(), OrderModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(o) for o in result.scalars().all()]

    async def count_all(self, status: Optional[PaymentStatus] = None) -> int:
        query = select(func.count(OrderModel.id))
        if status:
            query = query.where(OrderModel.payment_status == status.value)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def stats_for_account(self, account_id: int) -> tuple[int, Decimal]:
        result = await self.session.execute(
            select(
                func.count(OrderModel.id),
                func.coalesce(func.sum(OrderModel.total_amount - OrderModel.refunded_amount), 0),
            ).where(
                OrderModel.account_id == account_id,
                OrderModel.payment_status.in_(
                    [PaymentStatus.PAID.value, PaymentStatus.PARTIAL_REFUND.value]
                ),
            )
        )
        count, total = result.one()
        return int(count or 0), Decimal(str(total or 0)).quantize(Decimal("0.01"))

    async def claim_refund_request(self, order_id: int, *, reason: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.refund_status != RefundStatus.REQUESTED.value,
                OrderModel.payment_status.in_(
                    [PaymentStatus.PAID.value, PaymentStatus.PARTIAL_REFUND.value]
                ),
            )
            .values(
                refund_status=RefundStatus.REQUESTED.value,
                refund_reason=reason,
                refund_requested_at=now,
                refund_reviewed_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def resolve_refund_request(
        self,
        order_id: int,
        *,
        approved: bool,
        now: datetime,
        refund_amount: Decimal = Decimal("0"),
        new_status: Optional[PaymentStatus] = None,
    ) -> bool:
        values = {
            "refund_status": (RefundStatus.APPROVED if approved else RefundStatus.REJECTED).value,
            "refund_reviewed_at": now,
            "updated_at": now,
        }
        if approved:
            values["refunded_amount"] = OrderModel.refunded_amount + refund_amount
            if new_status is not None:
                values["payment_status"] = new_status.value
        result = await self.session.execute(
            update(OrderModel)
            .where(and_(OrderModel.id == order_id, OrderModel.refund_status == RefundStatus.REQUESTED.value))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_delivery_status(self, order_id: int, status: DeliveryStatus) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(delivery_status=status.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
