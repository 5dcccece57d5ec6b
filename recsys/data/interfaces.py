"""
外部协作方接口定义

推荐核心只通过这些接口访问画像、候选内容、实验记录与向量索引。
存储不可用时实现方应抛出 StoreUnavailableError，而不是静默返回空数据。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence, Tuple

from recsys.data.models import (
    ABAssignment,
    ABVariant,
    AlgorithmWeights,
    CandidateItem,
    EngagementTimeRecord,
    FeedbackRecord,
    ItemType,
    UserProfile,
)


class ProfileSource(ABC):
    """用户画像来源（用户、点赞、收藏、关注关系）"""

    @abstractmethod
    async def load_profile(self, user_id: str) -> UserProfile:
        """
        加载用户画像

        Raises:
            UserNotFoundError: 用户不存在
            StoreUnavailableError: 存储不可用
        """

    @abstractmethod
    async def find_profiles_by_interests(
        self, interests: Iterable[str], exclude_user_id: str, limit: int = 50
    ) -> List[UserProfile]:
        """查找研究兴趣有交集的其他用户"""


class CandidateSource(ABC):
    """候选内容来源"""

    @abstractmethod
    async def fetch_candidates(
        self, item_type: ItemType, exclude_ids: Iterable[str], limit: int
    ) -> List[CandidateItem]:
        """按创建时间倒序返回候选，已排除 exclude_ids"""

    @abstractmethod
    async def fetch_items(
        self, item_type: ItemType, ids: Sequence[str]
    ) -> List[CandidateItem]:
        """按 ID 批量获取内容详情（不存在的 ID 直接忽略）"""


class ExperimentStore(ABC):
    """A/B 实验分组与分配记录的持久化"""

    @abstractmethod
    async def load_active_variants(self) -> List[ABVariant]:
        """按创建顺序返回所有启用中的分组"""

    @abstractmethod
    async def load_variant(self, variant_id: str) -> Optional[ABVariant]:
        ...

    @abstractmethod
    async def list_variants(self, active_only: bool = False) -> List[ABVariant]:
        ...

    @abstractmethod
    async def load_assignment(self, user_id: str) -> Optional[ABAssignment]:
        """返回用户最近一次的分配记录"""

    @abstractmethod
    async def create_assignment_if_absent(
        self, user_id: str, variant_id: str
    ) -> Tuple[ABAssignment, bool]:
        """
        原子地为用户创建分配

        若用户已有指向启用分组的分配，直接返回 (已有分配, False)；
        否则创建 (user_id, variant_id) 并累加分组 total_assignments，返回 (新分配, True)。
        """

    @abstractmethod
    async def record_feedback(
        self, user_id: str, variant_id: str, positive: bool, clicked: bool
    ) -> bool:
        """累加用户分配与分组的反馈计数；无对应分配时返回 False"""

    @abstractmethod
    async def assignment_totals(self, variant_id: str) -> Tuple[int, int, int]:
        """返回 (分配数, 展示总数, 点击总数)"""

    @abstractmethod
    async def set_click_through_rate(self, variant_id: str, ctr: float) -> None:
        ...

    @abstractmethod
    async def create_variant(
        self,
        name: str,
        weights: AlgorithmWeights,
        traffic_percent: float,
        *,
        description: str = "",
        is_control: bool = False,
    ) -> ABVariant:
        ...

    @abstractmethod
    async def deactivate_variant(self, variant_id: str) -> bool:
        ...

    @abstractmethod
    async def assigned_user_ids(self, variant_id: str) -> List[str]:
        ...


class EngagementStore(ABC):
    """按时间上下文记录的互动日志（只追加）"""

    @abstractmethod
    async def record_engagement_time(self, record: EngagementTimeRecord) -> None:
        ...

    @abstractmethod
    async def recent_engagements(
        self,
        user_id: str,
        hour_from: int,
        hour_to: int,
        day_of_week: int,
        limit: int = 50,
    ) -> List[EngagementTimeRecord]:
        """返回 hour_of_day 落在 [hour_from, hour_to] 且同一星期几的最近记录"""


class FeedbackStore(ABC):
    @abstractmethod
    async def save_feedback(self, record: FeedbackRecord) -> None:
        ...

    @abstractmethod
    async def list_feedback(
        self, user_id: str, item_type: Optional[str] = None, limit: int = 50
    ) -> List[FeedbackRecord]:
        ...


class VectorIndex(ABC):
    """向量相似度检索能力"""

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @abstractmethod
    async def similar_content(
        self,
        query_vector: Sequence[float],
        item_type: ItemType,
        k: int,
        exclude_ids: Iterable[str] = (),
        min_similarity: float = 0.5,
    ) -> List[Tuple[str, float]]:
        """返回 [(item_id, cosine_similarity)]，按相似度降序"""
