from __future__ import annotations

from typing import Iterable, List, Optional

from loguru import logger

from recsys.cache.tier import CacheTier
from recsys.data.interfaces import FeedbackStore
from recsys.data.models import (
    CONTROL_VARIANT_ID,
    EngagementTimeRecord,
    FeedbackRecord,
    FeedbackType,
)
from recsys.experiments.manager import ExperimentManager
from recsys.recommender.personalizer import TimeBasedPersonalizer


class FeedbackService:
    """
    推荐反馈与互动埋点

    - 反馈/互动落库后立即失效该用户的推荐与画像缓存
    - A/B 实验记账在响应之后异步执行（见 record_experiment_feedback）
    """

    def __init__(
        self,
        store: FeedbackStore,
        experiments: ExperimentManager,
        personalizer: TimeBasedPersonalizer,
        cache: CacheTier,
    ):
        self.store = store
        self.experiments = experiments
        self.personalizer = personalizer
        self.cache = cache

    async def submit_feedback(
        self,
        user_id: str,
        item_type: str,
        item_id: str,
        feedback: FeedbackType,
        *,
        reason: Optional[str] = None,
        session_id: Optional[str] = None,
        position: Optional[int] = None,
        variant_id: Optional[str] = None,
    ) -> FeedbackRecord:
        record = FeedbackRecord(
            user_id=user_id,
            item_type=item_type,
            item_id=item_id,
            feedback=FeedbackType(feedback),
            reason=reason,
            session_id=session_id,
            position=position,
            variant_id=variant_id,
        )
        await self.store.save_feedback(record)
        await self.cache.invalidate_user(user_id)
        logger.info(
            f"[Feedback] user={user_id} {item_type}:{item_id} -> {record.feedback.value} "
            f"variant={variant_id or '-'}"
        )
        return record

    async def record_experiment_feedback(
        self, user_id: str, variant_id: Optional[str], feedback: FeedbackType
    ) -> None:
        """实验记账：反馈视为一次点击，随后刷新分组 CTR；失败只记录日志"""
        if not variant_id or variant_id == CONTROL_VARIANT_ID:
            return
        ok = await self.experiments.record_feedback(user_id, variant_id, feedback, clicked=True)
        if not ok:
            return
        try:
            await self.experiments.update_metrics(variant_id)
        except Exception as exc:
            logger.error(f"[Feedback] 刷新分组指标失败 variant={variant_id}: {exc!r}")

    async def list_feedback(
        self, user_id: str, item_type: Optional[str] = None, limit: int = 50
    ) -> List[FeedbackRecord]:
        return await self.store.list_feedback(user_id, item_type=item_type, limit=limit)

    async def track_engagement(
        self,
        user_id: str,
        content_type: str,
        content_id: Optional[str],
        tags: Iterable[str] = (),
        engagement_score: float = 5.0,
    ) -> EngagementTimeRecord:
        record = await self.personalizer.record_engagement(
            user_id, content_type, content_id, tags, engagement_score
        )
        await self.cache.invalidate_user(user_id)
        return record
