"""
Celery tasks for payment compensation: ledger sync, expiry sweep and
out-of-band intent polling.
"""
from __future__ import annotations

from typing import Optional

from celery import shared_task
from kombu.exceptions import OperationalError

from application.services.checkout_service import CheckoutService
from application.services.reconciler import PaymentReconciler
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import GatewayUnavailableError
from infrastructure.cache import get_pending_registry
from infrastructure.external.payments import get_payment_gateway
from infrastructure.tasks.config.celery import celery_app
from infrastructure.tasks.utils.base_task import BaseTask


logger = get_logger(__name__)


@shared_task(name="payments.reconcile_statuses", bind=True, base=BaseTask)
def reconcile_statuses(self, limit: int = 500):
    async def _run(uow_factory):
        report = await PaymentReconciler(uow_factory).sync_statuses(limit=limit)
        return report.to_dict()

    return self.run_async(_run)


@shared_task(name="payments.expire_pending", bind=True, base=BaseTask)
def expire_pending(self):
    async def _run(uow_factory):
        return {"expired": await PaymentReconciler(uow_factory).expire_stale()}

    return self.run_async(_run)


@shared_task(
    name="payments.poll_intent",
    bind=True,
    base=BaseTask,
    max_retries=3,
    default_retry_delay=30,
)
def poll_intent(self, account_id: int, provider: str, provider_ref: Optional[str] = None):
    """Finalize a payment the client stopped polling for; only useful with a shared registry."""

    async def _run(uow_factory):
        service = CheckoutService(
            uow_factory=uow_factory,
            registry=await get_pending_registry(),
            gateway_factory=get_payment_gateway,
        )
        result = await service.status(account_id, provider, provider_ref)
        return result.model_dump(mode="json")

    try:
        status = self.run_async(_run)
    except GatewayUnavailableError as exc:
        logger.warning("payment_poll_gateway_unavailable", provider=provider, account_id=account_id)
        raise self.retry(exc=exc)
    logger.info(
        "payment_intent_polled",
        provider=provider,
        account_id=account_id,
        provider_ref=status["provider_ref"],
        status=status["status"],
    )
    return status


def schedule_intent_poll(account_id: int, provider: str, provider_ref: str) -> bool:
    """创建意图后安排一次延迟补查；注册表为进程内实现或 eager 模式时跳过"""
    delay = settings.checkout.background_poll_delay_seconds
    if delay <= 0 or not settings.redis.url or celery_app.conf.task_always_eager:
        return False
    try:
        poll_intent.apply_async(args=[account_id, provider, provider_ref], countdown=delay)
    except OperationalError as exc:
        logger.warning("payment_poll_schedule_failed", provider=provider, account_id=account_id, error=str(exc))
        return False
    logger.info("payment_poll_scheduled", provider=provider, account_id=account_id, provider_ref=provider_ref, countdown=delay)
    return True
