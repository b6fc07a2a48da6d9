"""Common base task for Celery jobs"""
from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Awaitable, Callable

from celery import Task

from core.config import settings
from core.logging_config import get_logger
from infrastructure.cache import shutdown_redis_cache
from infrastructure.database import build_engine, build_session_factory
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)


class BaseTask(Task):
    """Structured success/failure logging plus an event-loop-per-run helper."""

    def run_async(self, job: Callable[[Callable[..., SQLAlchemyUnitOfWork]], Awaitable[Any]]) -> Any:
        """Run ``job(uow_factory)`` on a fresh loop with its own engine.

        Pooled connections are bound to the loop that opened them, so every
        run gets a private engine and drops the shared Redis client on exit.
        """

        async def _main():
            engine = build_engine(settings.database.url)
            uow_factory = partial(SQLAlchemyUnitOfWork, build_session_factory(engine))
            try:
                return await job(uow_factory)
            finally:
                await engine.dispose()
                if settings.redis.url:
                    await shutdown_redis_cache()

        return asyncio.run(_main())

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            args=args,
            kwargs=kwargs,
            exc=str(exc),
            error_type=type(exc).__name__,
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
        )
        super().on_success(retval, task_id, args, kwargs)
