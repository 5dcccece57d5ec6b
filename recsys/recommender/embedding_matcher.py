"""
语义相似度召回

用户兴趣 -> 查询向量 -> 向量索引 TopK。整个组件可选：
后端禁用、用户无兴趣、编码/检索异常或超时都返回空列表，不影响主链路。

查询向量按兴趣文本缓存在 CacheTier（带 TTL），组件本身不持有跨请求状态。
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Iterable, List, Optional, Tuple

from loguru import logger

from recsys.cache.tier import CacheTier, NullCacheTier
from recsys.data.interfaces import VectorIndex
from recsys.data.models import ItemType, RecommendationScore, UserProfile
from recsys.recommender.encoder import Encoder


def semantic_reason(similarity: float) -> str:
    return f"{round(similarity * 100)}% semantic match with your interests"


def interest_text(profile: UserProfile) -> str:
    return ". ".join(sorted(profile.interests))


class EmbeddingMatcher:
    def __init__(
        self,
        index: VectorIndex,
        encoder: Encoder,
        *,
        cache: Optional[CacheTier] = None,
        query_ttl_seconds: int = 3600,
        min_similarity: float = 0.6,
        timeout_seconds: float = 1.5,
    ):
        self.index = index
        self.encoder = encoder
        self.cache = cache or NullCacheTier()
        self.query_ttl_seconds = query_ttl_seconds
        self.min_similarity = min_similarity
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return self.index.enabled

    def _query_key(self, text: str) -> str:
        # 编码器或维度变化后旧向量不可复用
        model = getattr(self.encoder, "model", type(self.encoder).__name__)
        digest = hashlib.sha1(f"{model}:{self.encoder.dim}:{text}".encode("utf-8")).hexdigest()
        return self.cache.keys.query_vector(digest)

    async def query_vector(self, profile: UserProfile) -> List[float]:
        text = interest_text(profile)
        key = self._query_key(text)
        cached = await self.cache.get(key)
        if isinstance(cached, list) and len(cached) == self.encoder.dim:
            return [float(x) for x in cached]
        vector = await self.encoder.encode(text)
        await self.cache.set_with_ttl(key, vector, self.query_ttl_seconds)
        return vector

    async def _search(
        self, profile: UserProfile, item_type: ItemType, k: int, exclude_ids: List[str]
    ) -> List[Tuple[str, float]]:
        vector = await self.query_vector(profile)
        return await self.index.similar_content(
            vector,
            item_type,
            k=k,
            exclude_ids=exclude_ids,
            min_similarity=self.min_similarity,
        )

    async def match(
        self,
        profile: UserProfile,
        item_type: ItemType,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> List[RecommendationScore]:
        if limit <= 0 or not self.index.enabled or not profile.interests:
            return []

        try:
            hits = await asyncio.wait_for(
                self._search(profile, item_type, limit * 2, list(exclude_ids)),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"[Embedding] 向量检索超时（>{self.timeout_seconds}s），按禁用处理 user={profile.id}"
            )
            return []
        except Exception as exc:
            logger.warning(f"[Embedding] 向量检索失败，按禁用处理 user={profile.id}: {exc!r}")
            return []

        out: List[RecommendationScore] = []
        seen = set()
        for item_id, similarity in hits:
            if item_id in seen or similarity < self.min_similarity:
                continue
            seen.add(item_id)
            out.append(
                RecommendationScore(
                    item_id=item_id,
                    item_type=item_type,
                    score=similarity * 100,
                    reasons=[semantic_reason(similarity)],
                )
            )
        out.sort(key=lambda s: s.score, reverse=True)
        return out[:limit]
