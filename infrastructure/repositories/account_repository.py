"""
账户级仓储实现：订阅、钱包、优惠码
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.money import ZERO, money
from domain.pricing.repository import PromoCode, PromoCodeRepository
from domain.subscription.entity import Subscription, SubscriptionPlan, SubscriptionStatus
from domain.subscription.repository import SubscriptionRepository
from domain.wallet.entity import WalletEntry
from domain.wallet.repository import WalletRepository
from infrastructure.models.account import SubscriptionModel, WalletEntryModel, WalletModel
from infrastructure.models.catalog import PromoCodeModel
from shared.codes import BusinessCode


logger = get_logger(__name__)


class SQLAlchemySubscriptionRepository(SubscriptionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SubscriptionModel) -> Subscription:
        return Subscription(
            id=model.id,
            account_id=model.account_id,
            plan=SubscriptionPlan(model.plan),
            status=SubscriptionStatus(model.status),
            start_date=model.start_date,
            end_date=model.end_date,
            auto_renew=model.auto_renew,
            cancel_at_period_end=model.cancel_at_period_end,
            payment_reference=model.payment_reference,
        )

    async def get_current(self, account_id: int) -> Optional[Subscription]:
        result = await self.session.execute(
            select(SubscriptionModel)
            .where(SubscriptionModel.account_id == account_id)
            .order_by(SubscriptionModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def add(self, subscription: Subscription) -> Subscription:
        model = SubscriptionModel(
            account_id=subscription.account_id,
            plan=subscription.plan.value,
            status=subscription.status.value,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
            auto_renew=subscription.auto_renew,
            cancel_at_period_end=subscription.cancel_at_period_end,
            payment_reference=subscription.payment_reference,
        )
        self.session.add(model)
        await self.session.flush()
        logger.info(
            "subscription_created",
            subscription_id=model.id,
            account_id=model.account_id,
            plan=model.plan,
        )
        return self._to_entity(model)

    async def update(self, subscription: Subscription) -> Subscription:
        model = await self.session.get(SubscriptionModel, subscription.id)
        if model is None:
            raise BusinessException(
                code=BusinessCode.NOT_FOUND,
                message="Subscription not found",
                error_type="NotFound",
            )
        model.plan = subscription.plan.value
        model.status = subscription.status.value
        model.start_date = subscription.start_date
        model.end_date = subscription.end_date
        model.auto_renew = subscription.auto_renew
        model.cancel_at_period_end = subscription.cancel_at_period_end
        model.payment_reference = subscription.payment_reference
        await self.session.flush()
        return self._to_entity(model)


class SQLAlchemyWalletRepository(WalletRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WalletEntryModel) -> WalletEntry:
        return WalletEntry(
            id=model.id,
            account_id=model.account_id,
            amount=Decimal(str(model.amount)),
            reason=model.reason,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            created_at=model.created_at,
        )

    async def credit(self, entry: WalletEntry) -> Decimal:
        amount = money(entry.amount)
        self.session.add(
            WalletEntryModel(
                account_id=entry.account_id,
                amount=amount,
                reason=entry.reason,
                reference_type=entry.reference_type,
                reference_id=entry.reference_id,
                created_at=entry.created_at or datetime.now(timezone.utc),
            )
        )
        result = await self.session.execute(
            update(WalletModel)
            .where(WalletModel.account_id == entry.account_id)
            .values(balance=WalletModel.balance + amount, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.add(WalletModel(account_id=entry.account_id, balance=amount))
        await self.session.flush()
        balance = await self.get_balance(entry.account_id)
        logger.info(
            "wallet_credited",
            account_id=entry.account_id,
            amount=str(amount),
            balance=str(balance),
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
        )
        return balance

    async def get_balance(self, account_id: int) -> Decimal:
        result = await self.session.execute(
            select(WalletModel.balance).where(WalletModel.account_id == account_id)
        )
        balance = result.scalar_one_or_none()
        return money(balance) if balance is not None else ZERO

    async def list_entries(self, account_id: int, limit: int = 50) -> List[WalletEntry]:
        result = await self.session.execute(
            select(WalletEntryModel)
            .where(WalletEntryModel.account_id == account_id)
            .order_by(WalletEntryModel.id.desc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyPromoCodeRepository(PromoCodeRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PromoCodeModel) -> PromoCode:
        return PromoCode(
            id=model.id,
            code=model.code,
            percent_off=Decimal(str(model.percent_off)),
            expires_at=model.expires_at,
            active=model.active,
        )

    async def get_by_code(self, code: str) -> Optional[PromoCode]:
        result = await self.session.execute(
            select(PromoCodeModel).where(PromoCodeModel.code == code.strip().upper())
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def add(self, promo: PromoCode) -> PromoCode:
        model = PromoCodeModel(
            code=promo.code.strip().upper(),
            percent_off=promo.percent_off,
            expires_at=promo.expires_at,
            active=promo.active,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)
