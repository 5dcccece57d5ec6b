"""
多因子打分

对每个候选计算内容/社交/互动/时效/质量/多样性六个子分（0-100 量级），
再按实验权重加权求和。子分的文案理由按固定顺序追加，合并后保持顺序。
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from loguru import logger

from recsys.data.models import (
    AlgorithmWeights,
    CandidateItem,
    ItemType,
    RecommendationScore,
    UserProfile,
)
from recsys.recommender.text import extract_keywords, jaccard

FALLBACK_REASON = "Suggested for you"

_SECONDS_PER_DAY = 86400.0


@dataclass
class ScoreBreakdown:
    content: float = 0.0
    social: float = 0.0
    engagement: float = 0.0
    recency: float = 0.0
    quality: float = 0.0
    diversity: float = 0.0
    reasons: List[str] = field(default_factory=list)

    def weighted(self, w: AlgorithmWeights) -> float:
        total = (
            self.content * w.content
            + self.social * w.social
            + self.engagement * w.engagement
            + self.recency * w.recency
            + self.quality * w.quality
            + self.diversity * w.engagement
        )
        if not math.isfinite(total):
            return 0.0
        return max(0.0, total)


def _days_since(created_at: datetime, now: datetime) -> float:
    # 未来时间视为“刚刚发布”
    return max(0.0, (now - created_at).total_seconds() / _SECONDS_PER_DAY)


class Scorer:
    def __init__(self, parallel_threshold: int = 64, max_workers: int = 4):
        self.parallel_threshold = parallel_threshold
        self.max_workers = max(1, max_workers)

    def breakdown(
        self, profile: UserProfile, item: CandidateItem, now: datetime
    ) -> ScoreBreakdown:
        b = ScoreBreakdown()
        self._content(profile, item, b)
        self._social(profile, item, b)
        if item.type == ItemType.POST:
            self._post_signals(item, now, b)
        else:
            self._paper_signals(item, now, b)
        return b

    def score(
        self,
        profile: UserProfile,
        item: CandidateItem,
        weights: AlgorithmWeights,
        now: datetime,
    ) -> RecommendationScore:
        b = self.breakdown(profile, item, now)
        return RecommendationScore(
            item_id=item.id,
            item_type=item.type,
            score=b.weighted(weights),
            reasons=b.reasons or [FALLBACK_REASON],
        )

    def score_batch(
        self,
        profile: UserProfile,
        items: Sequence[CandidateItem],
        weights: AlgorithmWeights,
        now: datetime,
    ) -> List[RecommendationScore]:
        """批量打分（保持输入顺序）；单个候选异常只跳过该候选"""
        if not items:
            return []
        if len(items) > self.parallel_threshold and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(
                    pool.map(lambda it: self._safe_score(profile, it, weights, now), items)
                )
        else:
            results = [self._safe_score(profile, it, weights, now) for it in items]
        return [r for r in results if r is not None]

    def _safe_score(
        self,
        profile: UserProfile,
        item: CandidateItem,
        weights: AlgorithmWeights,
        now: datetime,
    ) -> Optional[RecommendationScore]:
        try:
            return self.score(profile, item, weights, now)
        except Exception as exc:
            logger.warning(f"[Scorer] 候选打分失败，已跳过 item={item.id}: {exc!r}")
            return None

    @staticmethod
    def _content(profile: UserProfile, item: CandidateItem, b: ScoreBreakdown) -> None:
        if profile.interests and item.tags:
            tag_part = jaccard(profile.interests, item.tags) * 40
            b.content += tag_part
            if tag_part > 20:
                b.reasons.append("Matches your research interests")

        if profile.interests and item.text:
            keyword_part = jaccard(profile.interests, extract_keywords(item.text)) * 20
            b.content += keyword_part
            if keyword_part > 10:
                b.reasons.append("Related to your research topics")

        if profile.department and item.department and profile.department == item.department:
            b.content += 10
            b.reasons.append("From your department")

    @staticmethod
    def _social(profile: UserProfile, item: CandidateItem, b: ScoreBreakdown) -> None:
        if any(a in profile.followed_user_ids for a in item.author_ids):
            b.social = 50
            b.reasons.append("From researchers you follow")

    @staticmethod
    def _post_signals(item: CandidateItem, now: datetime, b: ScoreBreakdown) -> None:
        c = item.counters
        engagement_rate = c.reactions + 2 * c.bookmarks
        b.engagement += min(30.0, math.log(engagement_rate + 1) * 8)
        if engagement_rate > 10:
            b.reasons.append("Popular in the community")
        b.engagement += min(10.0, math.log(c.views + 1) * 3)

        days = _days_since(item.created_at, now)
        b.recency = max(0.0, 20 * math.exp(-days / 7))
        if days < 1:
            b.reasons.append("Recently published")

        post_type = (item.post_type or "").upper()
        if post_type in ("QUESTION", "DISCUSSION"):
            b.diversity = 5
            if post_type == "QUESTION":
                b.reasons.append("Question from the community")

    @staticmethod
    def _paper_signals(item: CandidateItem, now: datetime, b: ScoreBreakdown) -> None:
        c = item.counters
        if c.citations > 10:
            b.quality += min(20.0, math.log(c.citations) * 5)
            if c.citations > 50:
                b.reasons.append("Highly cited paper")

        if c.reviews > 0:
            b.quality += c.avg_review_rating * 4
            if c.avg_review_rating >= 4:
                b.reasons.append("Highly rated by reviewers")

        days = _days_since(item.created_at, now)
        b.recency = max(0.0, 15 * math.exp(-days / 14))
        if days < 7:
            b.reasons.append("Recently added")

        if item.venue:
            b.quality += 5
            b.reasons.append("Published in peer-reviewed venue")
