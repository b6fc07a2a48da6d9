"""Celery application configuration"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)

logger = get_logger(__name__)

celery_app = Celery("checkout_core")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 任务完成后再 ack，worker 异常退出时任务会重新投递
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("default"),
        Queue("payments.poll"),
        Queue("payments.sweep"),
    ),
    # 单笔补查与全表清扫分开，清扫变慢时不拖住补查
    task_routes={
        "payments.poll_intent": {"queue": "payments.poll"},
        "payments.reconcile_statuses": {"queue": "payments.sweep"},
        "payments.expire_pending": {"queue": "payments.sweep"},
    },
    task_soft_time_limit=settings.checkout.sweep_soft_time_limit_seconds,
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

environment = (settings.ENVIRONMENT or "production").lower()
if environment in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, queues=[q.name for q in sender.conf.task_queues])
