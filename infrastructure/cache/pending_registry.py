"""
待确认支付意图注册表：内存实现（测试/单进程）与 Redis 实现（多进程部署）
"""
from __future__ import annotations

import time
from typing import Optional

from application.dtos.checkout import PendingIntent
from application.ports.pending_registry import PendingPaymentRegistry
from core.config import settings
from core.logging_config import get_logger
from infrastructure.cache.redis_cache import RedisCache


logger = get_logger(__name__)


def _key(account_id: int, slot: str) -> str:
    return f"pending_intent:{account_id}:{slot.lower()}"


class InMemoryPendingRegistry(PendingPaymentRegistry):
    """进程内实现；所有操作在一次事件循环步内完成，不需要锁"""

    def __init__(self, ttl_seconds: Optional[int] = None) -> None:
        self._ttl = settings.checkout.pending_intent_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries: dict[str, tuple[float, PendingIntent]] = {}

    def _live(self, key: str) -> Optional[PendingIntent]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, intent = entry
        if self._ttl > 0 and time.monotonic() >= expires_at:
            self._entries.pop(key, None)
            return None
        return intent

    def _purge_expired(self) -> None:
        # 含已放弃、不会再被读取的键
        if self._ttl <= 0:
            return
        now = time.monotonic()
        for key in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[key]

    async def open(self, intent: PendingIntent, *, slot: Optional[str] = None) -> None:
        self._purge_expired()
        key = _key(intent.account_id, slot or intent.provider)
        self._entries[key] = (time.monotonic() + self._ttl, intent.model_copy(deep=True))
        logger.info(
            "pending_intent_opened",
            account_id=intent.account_id,
            slot=slot or intent.provider,
            provider_ref=intent.provider_ref,
        )

    async def resolve(self, account_id: int, slot: str, provider_ref: str) -> Optional[PendingIntent]:
        intent = self._live(_key(account_id, slot))
        if intent is None or intent.provider_ref != provider_ref:
            return None
        return intent.model_copy(deep=True)

    async def current(self, account_id: int, slot: str) -> Optional[PendingIntent]:
        intent = self._live(_key(account_id, slot))
        return intent.model_copy(deep=True) if intent else None

    async def close(self, account_id: int, slot: str, provider_ref: str) -> bool:
        key = _key(account_id, slot)
        intent = self._live(key)
        if intent is None or intent.provider_ref != provider_ref:
            return False
        self._entries.pop(key, None)
        return True


class RedisPendingRegistry(PendingPaymentRegistry):
    """Redis 实现：JSON 值、命名空间键、TTL；close 使用 WATCH 比较后删除"""

    def __init__(self, cache: RedisCache, ttl_seconds: Optional[int] = None) -> None:
        self._cache = cache
        self._ttl = settings.checkout.pending_intent_ttl_seconds if ttl_seconds is None else ttl_seconds

    async def open(self, intent: PendingIntent, *, slot: Optional[str] = None) -> None:
        await self._cache.set(
            _key(intent.account_id, slot or intent.provider),
            intent.model_dump(mode="json"),
            ttl=self._ttl,
        )
        logger.info(
            "pending_intent_opened",
            account_id=intent.account_id,
            slot=slot or intent.provider,
            provider_ref=intent.provider_ref,
            backend="redis",
        )

    async def current(self, account_id: int, slot: str) -> Optional[PendingIntent]:
        raw = await self._cache.get(_key(account_id, slot))
        if not raw:
            return None
        return PendingIntent.model_validate(raw)

    async def resolve(self, account_id: int, slot: str, provider_ref: str) -> Optional[PendingIntent]:
        intent = await self.current(account_id, slot)
        if intent is None or intent.provider_ref != provider_ref:
            return None
        return intent

    async def close(self, account_id: int, slot: str, provider_ref: str) -> bool:
        return await self._cache.compare_and_delete(_key(account_id, slot), "provider_ref", provider_ref)


_memory_registry: Optional[InMemoryPendingRegistry] = None


async def get_pending_registry() -> PendingPaymentRegistry:
    """按配置选择后端：auto 在配置了 Redis 时使用 Redis，否则使用进程内实现"""
    global _memory_registry
    backend = (settings.checkout.pending_intent_backend or "auto").lower()
    if backend == "redis" or (backend == "auto" and settings.redis.url):
        from infrastructure.cache.redis_cache import get_redis_cache
        return RedisPendingRegistry(await get_redis_cache())
    if _memory_registry is None:
        _memory_registry = InMemoryPendingRegistry()
    return _memory_registry
