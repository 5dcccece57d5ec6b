"""
进程内存储实现

用于本地演示、单测以及没有接入平台数据库时的降级运行。
与 SQL 实现保持同样的接口语义（包括分配创建的原子性）。
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from recsys.core.exceptions import StoreUnavailableError, UserNotFoundError
from recsys.data.interfaces import (
    CandidateSource,
    EngagementStore,
    ExperimentStore,
    FeedbackStore,
    ProfileSource,
)
from recsys.data.models import (
    ABAssignment,
    ABVariant,
    AlgorithmWeights,
    CandidateItem,
    EngagementTimeRecord,
    FeedbackRecord,
    ItemType,
    UserProfile,
    utcnow,
)


class InMemoryProfileSource(ProfileSource):
    def __init__(self, profiles: Iterable[UserProfile] = (), *, available: bool = True):
        self._profiles: Dict[str, UserProfile] = {p.id: p for p in profiles}
        self.available = available

    def upsert(self, profile: UserProfile) -> None:
        self._profiles[profile.id] = profile

    async def load_profile(self, user_id: str) -> UserProfile:
        if not self.available:
            raise StoreUnavailableError("profile store")
        profile = self._profiles.get(user_id)
        if profile is None:
            raise UserNotFoundError(user_id)
        return replace(profile)

    async def find_profiles_by_interests(
        self, interests: Iterable[str], exclude_user_id: str, limit: int = 50
    ) -> List[UserProfile]:
        if not self.available:
            raise StoreUnavailableError("profile store")
        wanted = set(interests)
        if not wanted:
            return []
        out = [
            p
            for p in self._profiles.values()
            if p.id != exclude_user_id and p.interests & wanted
        ]
        return out[:limit]


class InMemoryCandidateSource(CandidateSource):
    def __init__(self, items: Iterable[CandidateItem] = (), *, available: bool = True):
        self._items: Dict[str, CandidateItem] = {i.id: i for i in items}
        self.available = available

    def add(self, item: CandidateItem) -> None:
        self._items[item.id] = item

    async def fetch_candidates(
        self, item_type: ItemType, exclude_ids: Iterable[str], limit: int
    ) -> List[CandidateItem]:
        if not self.available:
            raise StoreUnavailableError("candidate store")
        excluded = set(exclude_ids)
        pool = [
            i for i in self._items.values() if i.type == item_type and i.id not in excluded
        ]
        pool.sort(key=lambda i: i.created_at, reverse=True)
        return pool[:limit]

    async def fetch_items(
        self, item_type: ItemType, ids: Sequence[str]
    ) -> List[CandidateItem]:
        if not self.available:
            raise StoreUnavailableError("candidate store")
        out = []
        for item_id in ids:
            item = self._items.get(item_id)
            if item is not None and item.type == item_type:
                out.append(item)
        return out


class InMemoryExperimentStore(ExperimentStore):
    """内存版实验存储；check-and-insert 在同一把锁内完成"""

    def __init__(self) -> None:
        self.variants: Dict[str, ABVariant] = {}
        self.assignments: List[ABAssignment] = []
        self._lock = asyncio.Lock()

    async def load_active_variants(self) -> List[ABVariant]:
        return [v for v in self._ordered() if v.is_active]

    async def load_variant(self, variant_id: str) -> Optional[ABVariant]:
        return self.variants.get(variant_id)

    async def list_variants(self, active_only: bool = False) -> List[ABVariant]:
        if active_only:
            return await self.load_active_variants()
        return self._ordered()

    async def load_assignment(self, user_id: str) -> Optional[ABAssignment]:
        mine = [a for a in self.assignments if a.user_id == user_id]
        # 追加顺序即创建顺序
        return mine[-1] if mine else None

    async def create_assignment_if_absent(
        self, user_id: str, variant_id: str
    ) -> Tuple[ABAssignment, bool]:
        async with self._lock:
            for a in reversed(self.assignments):
                if a.user_id != user_id:
                    continue
                variant = self.variants.get(a.variant_id)
                if variant is not None and variant.is_active:
                    return a, False
            variant = self.variants.get(variant_id)
            if variant is None:
                raise KeyError(f"variant not found: {variant_id}")
            existing = self._find(user_id, variant_id)
            if existing is not None:
                # 分组被重新启用：沿用历史分配，不重复计数
                return existing, False
            assignment = ABAssignment(user_id=user_id, variant_id=variant_id)
            self.assignments.append(assignment)
            variant.total_assignments += 1
            return assignment, True

    async def record_feedback(
        self, user_id: str, variant_id: str, positive: bool, clicked: bool
    ) -> bool:
        async with self._lock:
            assignment = self._find(user_id, variant_id)
            if assignment is None:
                return False
            assignment.recommendations_shown += 1
            if clicked:
                assignment.recommendations_clicked += 1
            if positive:
                assignment.positive_feedback += 1
            else:
                assignment.negative_feedback += 1

            variant = self.variants.get(variant_id)
            if variant is not None:
                if positive:
                    variant.total_positive_feedback += 1
                else:
                    variant.total_negative_feedback += 1
            return True

    async def assignment_totals(self, variant_id: str) -> Tuple[int, int, int]:
        mine = [a for a in self.assignments if a.variant_id == variant_id]
        shown = sum(a.recommendations_shown for a in mine)
        clicked = sum(a.recommendations_clicked for a in mine)
        return len(mine), shown, clicked

    async def set_click_through_rate(self, variant_id: str, ctr: float) -> None:
        variant = self.variants.get(variant_id)
        if variant is not None:
            variant.avg_click_through_rate = float(ctr)

    async def create_variant(
        self,
        name: str,
        weights: AlgorithmWeights,
        traffic_percent: float,
        *,
        description: str = "",
        is_control: bool = False,
    ) -> ABVariant:
        variant = ABVariant(
            id=f"var_{uuid.uuid4().hex[:12]}",
            name=name,
            description=description,
            weights=weights,
            traffic_percent=float(traffic_percent),
            is_control=is_control,
            is_active=True,
            created_at=utcnow(),
        )
        self.variants[variant.id] = variant
        return variant

    async def deactivate_variant(self, variant_id: str) -> bool:
        variant = self.variants.get(variant_id)
        if variant is None:
            return False
        variant.is_active = False
        return True

    async def assigned_user_ids(self, variant_id: str) -> List[str]:
        return list(
            dict.fromkeys(a.user_id for a in self.assignments if a.variant_id == variant_id)
        )

    def _ordered(self) -> List[ABVariant]:
        # dict 保持插入顺序，即创建顺序
        return list(self.variants.values())

    def _find(self, user_id: str, variant_id: str) -> Optional[ABAssignment]:
        for a in self.assignments:
            if a.user_id == user_id and a.variant_id == variant_id:
                return a
        return None


class InMemoryEngagementStore(EngagementStore):
    def __init__(self) -> None:
        self.records: List[EngagementTimeRecord] = []

    async def record_engagement_time(self, record: EngagementTimeRecord) -> None:
        self.records.append(record)

    async def recent_engagements(
        self,
        user_id: str,
        hour_from: int,
        hour_to: int,
        day_of_week: int,
        limit: int = 50,
    ) -> List[EngagementTimeRecord]:
        matched = [
            r
            for r in self.records
            if r.user_id == user_id
            and hour_from <= r.hour_of_day <= hour_to
            and r.day_of_week == day_of_week
        ]
        matched.sort(key=lambda r: r.created_at, reverse=True)
        return matched[:limit]


class InMemoryFeedbackStore(FeedbackStore):
    def __init__(self) -> None:
        self.records: List[FeedbackRecord] = []

    async def save_feedback(self, record: FeedbackRecord) -> None:
        self.records.append(record)

    async def list_feedback(
        self, user_id: str, item_type: Optional[str] = None, limit: int = 50
    ) -> List[FeedbackRecord]:
        mine = [
            r
            for r in self.records
            if r.user_id == user_id and (item_type is None or r.item_type == item_type)
        ]
        mine.sort(key=lambda r: r.created_at, reverse=True)
        return mine[:limit]
