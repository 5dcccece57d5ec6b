"""
用户画像构建

画像由平台多张表聚合而来（兴趣、点赞、收藏、关注），按需计算并短期缓存。
"""

from __future__ import annotations

import asyncio
from typing import List

from loguru import logger

from recsys.cache.tier import CacheTier
from recsys.core.exceptions import StoreUnavailableError
from recsys.data.interfaces import ProfileSource
from recsys.data.models import UserProfile
from recsys.recommender.text import jaccard

SIMILAR_CANDIDATES = 50


class ProfileBuilder:
    def __init__(
        self,
        source: ProfileSource,
        cache: CacheTier,
        *,
        ttl_seconds: int = 3600,
        similar_ttl_seconds: int = 3600,
        timeout_seconds: float = 2.0,
    ):
        self.source = source
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.similar_ttl_seconds = similar_ttl_seconds
        self.timeout_seconds = timeout_seconds

    async def build(self, user_id: str) -> UserProfile:
        """
        获取用户画像（先查缓存）

        Raises:
            UserNotFoundError: 用户不存在
            StoreUnavailableError: 画像存储不可用或超时
        """
        key = self.cache.keys.profile(user_id)
        cached = await self.cache.get(key)
        if cached:
            try:
                return UserProfile.from_dict(cached)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(f"[Profile] 缓存画像格式错误，重新加载 user={user_id}: {exc}")

        try:
            profile = await asyncio.wait_for(
                self.source.load_profile(user_id), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError("profile store", "timeout") from exc

        await self.cache.set_with_ttl(key, profile.to_dict(), self.ttl_seconds)
        return profile

    async def find_similar_users(self, user_id: str, limit: int = 10) -> List[str]:
        """按研究兴趣 Jaccard 相似度返回最相近的用户 ID"""
        if limit <= 0:
            return []
        key = self.cache.keys.similar_users(user_id)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return [str(u) for u in cached][:limit]

        profile = await self.build(user_id)
        if not profile.interests:
            return []

        try:
            others = await asyncio.wait_for(
                self.source.find_profiles_by_interests(
                    profile.interests, exclude_user_id=user_id, limit=SIMILAR_CANDIDATES
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError("profile store", "timeout") from exc

        scored = [(o.id, jaccard(profile.interests, o.interests)) for o in others if o.id != user_id]
        scored.sort(key=lambda x: x[1], reverse=True)
        ranked = [uid for uid, _ in scored]
        await self.cache.set_with_ttl(key, ranked, self.similar_ttl_seconds)
        return ranked[:limit]
