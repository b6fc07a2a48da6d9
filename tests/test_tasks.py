import asyncio

from core.config import settings
from infrastructure.database import build_engine, create_tables
from infrastructure.tasks.config.beat import CELERY_BEAT_SCHEDULE
from infrastructure.tasks.tasks.payments import expire_pending, reconcile_statuses, schedule_intent_poll


def _prepare_schema():
    async def _run():
        engine = build_engine(settings.database.url)
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_sweeps_run_on_a_private_engine():
    _prepare_schema()

    assert expire_pending.apply().get() == {"expired": 0}
    assert reconcile_statuses.apply(kwargs={"limit": 10}).get() == {"scanned": 0, "updated": 0, "skipped": 0}


def test_beat_schedules_both_sweeps():
    tasks = {entry["task"] for entry in CELERY_BEAT_SCHEDULE.values()}
    assert tasks == {"payments.reconcile_statuses", "payments.expire_pending"}


def test_background_poll_needs_shared_registry():
    assert schedule_intent_poll(1, "nets", "NETS-REF") is False
