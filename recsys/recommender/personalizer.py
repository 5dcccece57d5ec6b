"""
分时段个性化

按“当前小时 ±2、同一星期几”的历史互动，推断此刻用户偏好的内容类型与标签，
对已排序列表做乘性加权。无记录或存储异常时为中性偏好（no-op）。
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger

from recsys.data.interfaces import EngagementStore
from recsys.data.models import (
    CandidateItem,
    EngagementTimeRecord,
    RecommendationScore,
    TimePreferences,
    utcnow,
)

WINDOW_HOURS = 2
HISTORY_LIMIT = 50
TOP_TAGS = 10
TYPE_BOOST = 1.2
TAG_BOOST_STEP = 0.1

TYPE_REASON = "You usually engage with this type now"
TAG_REASON = "Popular topic for you at this time"


def day_of_week(now: datetime) -> int:
    """0 = 周日 ... 6 = 周六"""
    return (now.weekday() + 1) % 7


def hour_window(hour: int) -> tuple[int, int]:
    # 不跨午夜回绕
    return max(0, hour - WINDOW_HOURS), min(23, hour + WINDOW_HOURS)


def build_preferences(records: Sequence[EngagementTimeRecord]) -> TimePreferences:
    if not records:
        return TimePreferences()

    tag_weights: Dict[str, float] = defaultdict(float)
    type_weights: Dict[str, float] = defaultdict(float)
    total = 0.0
    for r in records:
        for tag in r.tags:
            tag_weights[tag] += r.engagement_score
        type_weights[r.content_type] += r.engagement_score
        total += r.engagement_score

    # sorted 稳定：同权重保持首次出现顺序（即最近优先）
    preferred_tags = [t for t, _ in sorted(tag_weights.items(), key=lambda x: x[1], reverse=True)]
    preferred_types = [t for t, _ in sorted(type_weights.items(), key=lambda x: x[1], reverse=True)]
    avg = total / len(records)
    return TimePreferences(
        preferred_tags=preferred_tags[:TOP_TAGS],
        preferred_content_types=preferred_types,
        engagement_boost=1.0 + (avg / 10) * 0.5,
    )


class TimeBasedPersonalizer:
    def __init__(self, store: EngagementStore):
        self.store = store

    async def get_time_preferences(
        self, user_id: str, now: Optional[datetime] = None
    ) -> TimePreferences:
        now = now or utcnow()
        hour_from, hour_to = hour_window(now.hour)
        try:
            records = await self.store.recent_engagements(
                user_id,
                hour_from=hour_from,
                hour_to=hour_to,
                day_of_week=day_of_week(now),
                limit=HISTORY_LIMIT,
            )
        except Exception as exc:
            logger.warning(f"[TimePref] 读取互动时段记录失败，使用中性偏好 user={user_id}: {exc!r}")
            return TimePreferences()
        return build_preferences(records)

    @staticmethod
    def apply(
        scores: Sequence[RecommendationScore],
        prefs: TimePreferences,
        items: Mapping[str, CandidateItem],
    ) -> List[RecommendationScore]:
        """返回新的打分对象列表并按分数稳定降序；items 中找不到的条目保持不变"""
        preferred_types = set(prefs.preferred_content_types)
        preferred_tags = set(prefs.preferred_tags)

        out: List[RecommendationScore] = []
        for s in scores:
            item = items.get(s.item_id)
            if item is None:
                out.append(s)
                continue

            boost = 1.0
            reasons = list(s.reasons)
            if s.item_type.value in preferred_types:
                boost *= TYPE_BOOST
                reasons.append(TYPE_REASON)
            overlap = len(set(item.tags) & preferred_tags)
            if overlap > 0:
                boost *= 1.0 + overlap * TAG_BOOST_STEP
                reasons.append(TAG_REASON)
            boost *= prefs.engagement_boost

            out.append(
                RecommendationScore(
                    item_id=s.item_id,
                    item_type=s.item_type,
                    score=s.score * boost,
                    reasons=reasons,
                )
            )
        out.sort(key=lambda r: r.score, reverse=True)
        return out

    async def record_engagement(
        self,
        user_id: str,
        content_type: str,
        content_id: Optional[str],
        tags: Iterable[str],
        engagement_score: float = 5.0,
        now: Optional[datetime] = None,
    ) -> EngagementTimeRecord:
        now = now or utcnow()
        record = EngagementTimeRecord(
            user_id=user_id,
            hour_of_day=now.hour,
            day_of_week=day_of_week(now),
            content_type=content_type,
            content_id=content_id,
            tags=list(tags),
            engagement_score=float(engagement_score),
            created_at=now,
        )
        await self.store.record_engagement_time(record)
        logger.debug(
            f"[TimePref] 记录互动 user={user_id} type={content_type} "
            f"hour={record.hour_of_day} day={record.day_of_week}"
        )
        return record
