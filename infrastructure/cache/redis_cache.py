"""Redis 访问封装：JSON 值 + 命名空间键，供待支付登记与回调去重使用"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import WatchError

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class RedisCache:
    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def _ttl(self, ttl: Optional[int]) -> Optional[int]:
        expire = settings.redis.default_ttl if ttl is None else ttl
        return expire if expire and expire > 0 else None

    async def get(self, key: str) -> Any:
        raw = await self._client.get(self._key(key))
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self._client.set(self._key(key), json.dumps(value, default=str), ex=self._ttl(ttl))

    async def claim(self, key: str, ttl: Optional[int] = None) -> bool:
        """SET NX：首次写入返回 True，键已存在返回 False"""
        return bool(await self._client.set(self._key(key), "1", ex=self._ttl(ttl), nx=True))

    async def release(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def compare_and_delete(self, key: str, field: str, expected: Any) -> bool:
        """JSON 值中 field 等于 expected 时才删除（WATCH 乐观锁，冲突重试）"""
        redis_key = self._key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(redis_key)
                    raw = await pipe.get(redis_key)
                    current = json.loads(raw) if raw is not None else None
                    if not isinstance(current, dict) or current.get(field) != expected:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.delete(redis_key)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisCache] = None
_lock = asyncio.Lock()


async def init_redis_cache(namespace: Optional[str] = None) -> RedisCache:
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance
        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis缓存")

        _redis_client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )
        _cache_instance = RedisCache(_redis_client, namespace=namespace or settings.redis.namespace)
        logger.info("redis_cache_initialized", namespace=namespace or settings.redis.namespace)
        return _cache_instance


async def get_redis_cache() -> RedisCache:
    return _cache_instance or await init_redis_cache()


async def shutdown_redis_cache() -> None:
    global _redis_client, _cache_instance

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        _cache_instance = None
