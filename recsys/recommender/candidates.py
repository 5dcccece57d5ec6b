from __future__ import annotations

import asyncio
from typing import Iterable, List

from loguru import logger

from recsys.core.exceptions import StoreUnavailableError
from recsys.data.interfaces import CandidateSource
from recsys.data.models import CandidateItem, ItemType, UserProfile


class CandidateRetriever:
    """
    候选召回：按时间倒序取有界候选池

    排除：请求显式排除的 ID、用户已点赞/收藏的内容、用户本人发布/署名的内容。
    """

    def __init__(self, source: CandidateSource, *, pool_size: int = 200, timeout_seconds: float = 3.0):
        self.source = source
        self.pool_size = pool_size
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def excluded_ids(profile: UserProfile, exclude_ids: Iterable[str] = ()) -> set[str]:
        return set(exclude_ids) | profile.liked_item_ids | profile.bookmarked_item_ids

    async def retrieve(
        self,
        profile: UserProfile,
        item_type: ItemType,
        exclude_ids: Iterable[str] = (),
    ) -> List[CandidateItem]:
        excluded = self.excluded_ids(profile, exclude_ids)
        try:
            items = await asyncio.wait_for(
                self.source.fetch_candidates(item_type, sorted(excluded), self.pool_size),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError("candidate store", "timeout") from exc

        # 数据源未必严格遵守排除条件，这里再兜底过滤一次
        out = [
            i
            for i in items
            if i.type == item_type and i.id not in excluded and profile.id not in i.author_ids
        ]
        if len(out) != len(items):
            logger.debug(f"[Candidates] 兜底过滤移除 {len(items) - len(out)} 条 type={item_type.value}")
        return out[: self.pool_size]

    async def fetch_items(self, item_type: ItemType, ids: List[str]) -> List[CandidateItem]:
        if not ids:
            return []
        try:
            return await asyncio.wait_for(
                self.source.fetch_items(item_type, ids), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError("candidate store", "timeout") from exc
