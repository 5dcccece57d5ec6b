"""
推荐主链路

缓存 -> 实验分组(权重) -> 画像 -> 候选召回 -> 多因子打分(+ 向量召回并发) -> 分时段加权 -> 多路合并 -> 结果组装 -> 写缓存

打分结果(RecommendationScore)与内容详情(CandidateItem)始终分开，
只在最后的结果组装阶段拼成响应结构。
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from recsys.cache.tier import CacheTier
from recsys.data.models import (
    AlgorithmWeights,
    CandidateItem,
    ItemType,
    RecommendationScore,
    RecommendationType,
    UserProfile,
    utcnow,
)
from recsys.experiments.manager import ExperimentManager
from recsys.recommender.candidates import CandidateRetriever
from recsys.recommender.embedding_matcher import EmbeddingMatcher
from recsys.recommender.merger import merge_recommendations
from recsys.recommender.personalizer import TimeBasedPersonalizer
from recsys.recommender.profile import ProfileBuilder
from recsys.recommender.scorer import Scorer


def candidate_to_dict(item: CandidateItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "type": item.type.value,
        "title": item.title,
        "text": item.text,
        "tags": sorted(item.tags),
        "author_ids": list(item.author_ids),
        "venue": item.venue,
        "department": item.department,
        "post_type": item.post_type,
        "counters": asdict(item.counters),
        "created_at": item.created_at.isoformat(),
    }


def _rank(scores: Iterable[RecommendationScore], limit: int) -> List[RecommendationScore]:
    return sorted(scores, key=lambda s: s.score, reverse=True)[: max(0, limit)]


class RecommendationService:
    def __init__(
        self,
        *,
        profiles: ProfileBuilder,
        candidates: CandidateRetriever,
        scorer: Scorer,
        embeddings: EmbeddingMatcher,
        personalizer: TimeBasedPersonalizer,
        experiments: ExperimentManager,
        cache: CacheTier,
        cache_ttl_seconds: int = 300,
    ):
        self.profiles = profiles
        self.candidates = candidates
        self.scorer = scorer
        self.embeddings = embeddings
        self.personalizer = personalizer
        self.experiments = experiments
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    async def get_recommendations(
        self,
        user_id: str,
        rec_type: RecommendationType = RecommendationType.MIXED,
        limit: int = 20,
        exclude_ids: Sequence[str] = (),
        use_cache: bool = True,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        获取个性化推荐

        Raises:
            UserNotFoundError: 用户不存在
            StoreUnavailableError: 画像/候选存储不可用
        """
        if limit <= 0:
            raise ValueError("limit 必须为正整数")

        exclude_ids = [i for i in exclude_ids if i]
        # 带排除条件的请求结果与缓存 key 不对应，不读不写
        cacheable = use_cache and not exclude_ids
        cache_key = self.cache.keys.recommendations(user_id, rec_type.value)
        if cacheable:
            cached = await self.cache.get(cache_key)
            # 缓存条目记录生成时的 limit，不一致按未命中处理
            if (
                isinstance(cached, dict)
                and cached.get("limit") == limit
                and isinstance(cached.get("payload"), dict)
            ):
                logger.debug(f"[Recommend] 命中缓存 user={user_id} type={rec_type.value}")
                return {**cached["payload"], "cached": True}

        now = now or utcnow()
        assignment = await self.experiments.get_variant(user_id)
        weights = assignment.weights
        profile = await self.profiles.build(user_id)

        pool: Dict[str, CandidateItem] = {}
        if rec_type is RecommendationType.MIXED:
            recs = await self._mixed(profile, limit, exclude_ids, weights, now, pool)
        else:
            recs = await self._score_type(
                profile, rec_type.item_type, limit, exclude_ids, weights, now, pool
            )

        recs, items = await self._attach_items(profile, recs, pool, exclude_ids)

        prefs = await self.personalizer.get_time_preferences(user_id, now)
        if prefs.preferred_tags or prefs.engagement_boost > 1.0:
            recs = self.personalizer.apply(recs, prefs, items)

        session_id = f"{user_id}-{int(now.timestamp() * 1000)}"
        results = [
            {
                "item": candidate_to_dict(items[r.item_id]),
                "type": r.item_type.value,
                "score": r.score,
                "reasons": list(r.reasons),
                "position": idx + 1,
                "session_id": session_id,
                "variant_id": assignment.variant_id,
            }
            for idx, r in enumerate(recs)
        ]
        payload = {
            "recommendations": results,
            "total": len(results),
            "session_id": session_id,
            "variant_id": assignment.variant_id,
            "time_optimized": prefs.engagement_boost > 1.0,
            "cached": False,
        }
        logger.info(
            f"[Recommend] user={user_id} type={rec_type.value} variant={assignment.variant_id} "
            f"返回 {len(results)} 条"
        )

        if cacheable:
            await self.cache.set_with_ttl(
                cache_key, {"limit": limit, "payload": payload}, self.cache_ttl_seconds
            )
        return payload

    async def find_similar_users(self, user_id: str, limit: int = 10) -> List[str]:
        return await self.profiles.find_similar_users(user_id, limit)

    async def _score_type(
        self,
        profile: UserProfile,
        item_type: ItemType,
        limit: int,
        exclude_ids: Sequence[str],
        weights: AlgorithmWeights,
        now: datetime,
        pool: Dict[str, CandidateItem],
    ) -> List[RecommendationScore]:
        items = await self.candidates.retrieve(profile, item_type, exclude_ids)
        for item in items:
            pool[item.id] = item
        # CPU 密集的打分放到线程里，避免阻塞事件循环
        scores = await asyncio.to_thread(self.scorer.score_batch, profile, items, weights, now)
        return _rank(scores, limit)

    async def _mixed(
        self,
        profile: UserProfile,
        limit: int,
        exclude_ids: Sequence[str],
        weights: AlgorithmWeights,
        now: datetime,
        pool: Dict[str, CandidateItem],
    ) -> List[RecommendationScore]:
        half = limit // 2
        use_embeddings = weights.embedding > 0
        excluded = sorted(self.candidates.excluded_ids(profile, exclude_ids))

        tasks = [
            self._score_type(profile, ItemType.POST, limit, exclude_ids, weights, now, pool),
            self._score_type(profile, ItemType.PAPER, half, exclude_ids, weights, now, pool),
        ]
        if use_embeddings:
            tasks.append(self.embeddings.match(profile, ItemType.POST, half, excluded))
            tasks.append(self.embeddings.match(profile, ItemType.PAPER, half, excluded))

        results = await asyncio.gather(*tasks)
        base = _rank(list(results[0]) + list(results[1]), limit)
        if not use_embeddings:
            return base

        emb_posts, emb_papers = results[2], results[3]
        logger.debug(
            f"[Recommend] 向量召回 posts={len(emb_posts)} papers={len(emb_papers)} "
            f"embedding_weight={weights.embedding}"
        )
        return merge_recommendations(
            [base, emb_posts, emb_papers],
            [1.0, weights.embedding, weights.embedding],
            limit,
        )

    async def _attach_items(
        self,
        profile: UserProfile,
        recs: List[RecommendationScore],
        pool: Dict[str, CandidateItem],
        exclude_ids: Sequence[str],
    ) -> tuple[List[RecommendationScore], Dict[str, CandidateItem]]:
        """补齐候选池之外（向量召回）条目的详情，并丢弃取不到详情或不应推荐的条目"""
        missing: Dict[ItemType, List[str]] = {}
        for r in recs:
            if r.item_id not in pool:
                missing.setdefault(r.item_type, []).append(r.item_id)

        if missing:
            types = list(missing.keys())
            fetched = await asyncio.gather(
                *[self.candidates.fetch_items(t, missing[t]) for t in types]
            )
            for items in fetched:
                for item in items:
                    pool.setdefault(item.id, item)

        excluded = self.candidates.excluded_ids(profile, exclude_ids)
        kept: List[RecommendationScore] = []
        for r in recs:
            item = pool.get(r.item_id)
            if item is None or item.id in excluded or profile.id in item.author_ids:
                continue
            kept.append(r)
        return kept, {r.item_id: pool[r.item_id] for r in kept}
