from decimal import Decimal
from types import SimpleNamespace

import pytest

from application.dtos.checkout import PendingIntent
from infrastructure.cache.pending_registry import InMemoryPendingRegistry


def _intent(ref: str, total: str = "10.00") -> PendingIntent:
    return PendingIntent(account_id=1, provider="paypal", provider_ref=ref, total=Decimal(total))


@pytest.mark.asyncio
async def test_latest_intent_wins(registry):
    await registry.open(_intent("A"))
    await registry.open(_intent("B", "12.00"))

    assert await registry.resolve(1, "paypal", "A") is None
    resolved = await registry.resolve(1, "PayPal", "B")
    assert resolved.total == Decimal("12.00")


@pytest.mark.asyncio
async def test_close_only_matching_reference(registry):
    await registry.open(_intent("A"))

    assert await registry.close(1, "paypal", "OTHER") is False
    assert await registry.current(1, "paypal") is not None
    assert await registry.close(1, "paypal", "A") is True
    assert await registry.current(1, "paypal") is None


@pytest.mark.asyncio
async def test_returned_snapshot_is_a_copy(registry):
    await registry.open(_intent("A"))
    snapshot = await registry.current(1, "paypal")
    snapshot.total = Decimal("0.01")
    assert (await registry.current(1, "paypal")).total == Decimal("10.00")


@pytest.mark.asyncio
async def test_entries_expire(monkeypatch):
    import infrastructure.cache.pending_registry as module

    clock = [1000.0]
    monkeypatch.setattr(module, "time", SimpleNamespace(monotonic=lambda: clock[0]))
    registry = InMemoryPendingRegistry(ttl_seconds=60)
    await registry.open(_intent("A"))

    clock[0] += 59
    assert await registry.current(1, "paypal") is not None
    clock[0] += 2
    assert await registry.current(1, "paypal") is None


@pytest.mark.asyncio
async def test_open_drops_abandoned_entries(monkeypatch):
    import infrastructure.cache.pending_registry as module

    clock = [1000.0]
    monkeypatch.setattr(module, "time", SimpleNamespace(monotonic=lambda: clock[0]))
    registry = InMemoryPendingRegistry(ttl_seconds=60)
    await registry.open(_intent("A"))
    await registry.open(PendingIntent(account_id=2, provider="stripe", provider_ref="pi_2", total=Decimal("5.00")))

    clock[0] += 61
    await registry.open(PendingIntent(account_id=3, provider="stripe", provider_ref="pi_3", total=Decimal("8.00")))

    assert list(registry._entries) == ["pending_intent:3:stripe"]
