"""
Redis 客户端工具模块

提供统一的 Redis 连接管理；缓存读写语义由 recsys.cache.tier 负责。
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as redis
from loguru import logger

from recsys.core.config import settings


class RedisClient:
    """Redis 异步客户端封装"""

    def __init__(self):
        self._client: Optional[redis.Redis] = None

    async def connect(self):
        """建立 Redis 连接；失败时保持未连接状态，由缓存层降级为 miss"""
        if settings.REDIS_DISABLED:
            logger.info("REDIS_DISABLED=true，跳过 Redis 连接初始化")
            self._client = None
            return
        try:
            if settings.REDIS_UNIX_SOCKET:
                self._client = redis.Redis(
                    unix_socket_path=settings.REDIS_UNIX_SOCKET,
                    db=settings.REDIS_DB,
                    password=settings.REDIS_PASSWORD,
                    decode_responses=True,  # 自动解码为字符串
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                )
            else:
                self._client = redis.Redis(
                    host=settings.REDIS_HOST,
                    port=settings.REDIS_PORT,
                    db=settings.REDIS_DB,
                    password=settings.REDIS_PASSWORD,
                    decode_responses=True,  # 自动解码为字符串
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                )
            # 测试连接
            await self._client.ping()
            target = (
                settings.REDIS_UNIX_SOCKET
                if settings.REDIS_UNIX_SOCKET
                else f"{settings.REDIS_HOST}:{settings.REDIS_PORT}"
            )
            logger.info(f"✅ Redis 连接成功: {target}")
        except Exception as e:
            logger.error(f"❌ Redis 连接失败: {e}")
            self._client = None

    async def close(self):
        """关闭 Redis 连接"""
        if self._client:
            await self._client.close()
            self._client = None
            logger.info("Redis 连接已关闭")

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self):
        """获取 Redis 客户端实例"""
        if not self._client:
            raise RuntimeError("Redis 客户端未初始化，请先调用 connect()")
        return self._client


# 全局 Redis 客户端实例（由应用生命周期负责 connect/close）
redis_client = RedisClient()
