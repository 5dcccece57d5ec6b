"""
缓存层

- RedisCacheTier：redis.asyncio + JSON 序列化；任何后端异常/超时都记 warning 并视为未命中
- NullCacheTier：不缓存（REDIS_DISABLED 或单测）

缓存只是加速手段，不能成为推荐链路的单点故障。
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from loguru import logger

from recsys.cache.keys import CacheKeys
from recsys.core.redis_client import RedisClient


class CacheTier(ABC):
    def __init__(self, keys: Optional[CacheKeys] = None):
        self.keys = keys or CacheKeys()

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """返回反序列化后的 payload；未命中或降级时返回 None"""

    @abstractmethod
    async def set_with_ttl(self, key: str, payload: Any, ttl_seconds: int) -> bool:
        ...

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        ...

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        ...

    async def invalidate_user(self, user_id: str) -> int:
        return await self.delete(*self.keys.user_scoped(user_id))


class NullCacheTier(CacheTier):
    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set_with_ttl(self, key: str, payload: Any, ttl_seconds: int) -> bool:
        return False

    async def delete(self, *keys: str) -> int:
        return 0

    async def stats(self) -> Dict[str, Any]:
        return {"backend": "none", "connected": False}


class RedisCacheTier(CacheTier):
    def __init__(
        self,
        redis_client: RedisClient,
        keys: Optional[CacheKeys] = None,
        *,
        timeout_seconds: float = 0.5,
    ):
        super().__init__(keys)
        self._redis = redis_client
        self._timeout = timeout_seconds

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await asyncio.wait_for(self._redis.client.get(key), timeout=self._timeout)
        except Exception as exc:
            logger.warning(f"[Cache] 读取降级为未命中 key={key}: {exc!r}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning(f"[Cache] 缓存内容无法解析，视为未命中 key={key}: {exc}")
            return None

    async def set_with_ttl(self, key: str, payload: Any, ttl_seconds: int) -> bool:
        try:
            data = json.dumps(payload, ensure_ascii=False, default=str)
            await asyncio.wait_for(
                self._redis.client.set(key, data, ex=int(ttl_seconds)),
                timeout=self._timeout,
            )
            return True
        except Exception as exc:
            logger.warning(f"[Cache] 写入失败（已降级） key={key}: {exc!r}")
            return False

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            removed = await asyncio.wait_for(
                self._redis.client.delete(*keys), timeout=self._timeout
            )
            return int(removed or 0)
        except Exception as exc:
            logger.warning(f"[Cache] 删除失败（已降级） keys={list(keys)}: {exc!r}")
            return 0

    async def stats(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"backend": "redis", "connected": False}
        try:
            client = self._redis.client
            await asyncio.wait_for(client.ping(), timeout=self._timeout)
            out["connected"] = True
            out["keys"] = int(await asyncio.wait_for(client.dbsize(), timeout=self._timeout))
        except Exception as exc:
            logger.warning(f"[Cache] 状态查询失败: {exc!r}")
            out["error"] = str(exc)
        return out
