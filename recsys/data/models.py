"""
推荐领域数据模型

- 画像/候选/打分结果为纯数据对象，不混入展示字段
- AlgorithmWeights 在构造时校验，非法配置在加载阶段即被拒绝
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from recsys.core.exceptions import InvalidWeightsError


def utcnow() -> datetime:
    """当前 UTC 时间（naive），与数据库 DateTime 列、候选发布时间保持同一口径"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ItemType(str, Enum):
    POST = "post"
    PAPER = "paper"


class RecommendationType(str, Enum):
    POSTS = "posts"
    PAPERS = "papers"
    MIXED = "mixed"

    @property
    def item_type(self) -> Optional[ItemType]:
        if self is RecommendationType.POSTS:
            return ItemType.POST
        if self is RecommendationType.PAPERS:
            return ItemType.PAPER
        return None


class FeedbackType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NOT_INTERESTED = "not_interested"

    @property
    def is_positive(self) -> bool:
        return self is FeedbackType.POSITIVE


CONTROL_VARIANT_ID = "control"


@dataclass
class UserProfile:
    id: str
    interests: Set[str] = field(default_factory=set)
    liked_item_ids: Set[str] = field(default_factory=set)
    bookmarked_item_ids: Set[str] = field(default_factory=set)
    followed_user_ids: Set[str] = field(default_factory=set)
    department: Optional[str] = None
    institution: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """序列化为可缓存的 JSON 结构（集合转为有序列表）"""
        return {
            "id": self.id,
            "interests": sorted(self.interests),
            "liked_item_ids": sorted(self.liked_item_ids),
            "bookmarked_item_ids": sorted(self.bookmarked_item_ids),
            "followed_user_ids": sorted(self.followed_user_ids),
            "department": self.department,
            "institution": self.institution,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserProfile":
        return cls(
            id=str(data["id"]),
            interests=set(data.get("interests") or []),
            liked_item_ids=set(data.get("liked_item_ids") or []),
            bookmarked_item_ids=set(data.get("bookmarked_item_ids") or []),
            followed_user_ids=set(data.get("followed_user_ids") or []),
            department=data.get("department"),
            institution=data.get("institution"),
        )


@dataclass
class EngagementCounters:
    reactions: int = 0
    views: int = 0
    bookmarks: int = 0
    citations: int = 0
    reviews: int = 0
    avg_review_rating: float = 0.0


@dataclass
class CandidateItem:
    """候选内容（帖子或论文）"""

    id: str
    type: ItemType
    created_at: datetime
    tags: Set[str] = field(default_factory=set)
    text: str = ""
    author_ids: List[str] = field(default_factory=list)
    counters: EngagementCounters = field(default_factory=EngagementCounters)
    venue: Optional[str] = None  # 期刊/会议
    department: Optional[str] = None  # 第一作者所在院系
    post_type: Optional[str] = None  # QUESTION / DISCUSSION / ...
    title: Optional[str] = None


@dataclass
class RecommendationScore:
    item_id: str
    item_type: ItemType
    score: float
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type.value,
            "score": self.score,
            "reasons": list(self.reasons),
        }


_WEIGHT_FIELDS = (
    ("content", "contentWeight"),
    ("social", "socialWeight"),
    ("engagement", "engagementWeight"),
    ("recency", "recencyWeight"),
    ("quality", "qualityWeight"),
    ("embedding", "embeddingWeight"),
)


@dataclass(frozen=True)
class AlgorithmWeights:
    """各打分维度的权重（非负、有限，不要求和为 1）"""

    content: float
    social: float
    engagement: float
    recency: float
    quality: float
    embedding: float = 0.0

    def __post_init__(self) -> None:
        for name, _ in _WEIGHT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidWeightsError(f"{name} 权重必须是数值: {value!r}")
            if not math.isfinite(value) or value < 0:
                raise InvalidWeightsError(f"{name} 权重必须是非负有限数: {value!r}")

    @classmethod
    def from_config(cls, config: Any) -> "AlgorithmWeights":
        """
        解析持久化的权重配置

        兼容 camelCase（contentWeight）与 snake_case（content）两种 key；
        embedding 缺省为 0，其余字段缺失视为非法。
        """
        if not isinstance(config, Mapping):
            raise InvalidWeightsError(f"权重配置必须是对象: {type(config).__name__}")
        values: Dict[str, Any] = {}
        for name, camel in _WEIGHT_FIELDS:
            if camel in config:
                values[name] = config[camel]
            elif name in config:
                values[name] = config[name]
            elif name == "embedding":
                values[name] = 0.0
            else:
                raise InvalidWeightsError(f"权重配置缺少字段: {camel}")
        return cls(**values)

    def to_config(self) -> Dict[str, float]:
        return {camel: float(getattr(self, name)) for name, camel in _WEIGHT_FIELDS}


CONTROL_WEIGHTS = AlgorithmWeights(
    content=0.30,
    social=0.25,
    engagement=0.20,
    recency=0.15,
    quality=0.10,
    embedding=0.00,  # 默认不启用向量召回
)


@dataclass
class ABVariant:
    id: str
    name: str
    weights: Optional[AlgorithmWeights]  # None 表示持久化配置损坏
    traffic_percent: float
    is_active: bool = True
    is_control: bool = False
    description: str = ""
    total_assignments: int = 0
    total_positive_feedback: int = 0
    total_negative_feedback: int = 0
    avg_click_through_rate: float = 0.0
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ABAssignment:
    user_id: str
    variant_id: str
    recommendations_shown: int = 0
    recommendations_clicked: int = 0
    positive_feedback: int = 0
    negative_feedback: int = 0
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class VariantAssignment:
    """一次请求实际使用的实验分组与权重"""

    variant_id: str
    weights: AlgorithmWeights

    @property
    def is_control(self) -> bool:
        return self.variant_id == CONTROL_VARIANT_ID

    def to_dict(self) -> Dict[str, Any]:
        return {"variantId": self.variant_id, "weights": self.weights.to_config()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VariantAssignment":
        return cls(
            variant_id=str(data["variantId"]),
            weights=AlgorithmWeights.from_config(data["weights"]),
        )


CONTROL_ASSIGNMENT = VariantAssignment(variant_id=CONTROL_VARIANT_ID, weights=CONTROL_WEIGHTS)


@dataclass
class EngagementTimeRecord:
    user_id: str
    hour_of_day: int
    day_of_week: int  # 0 = 周日
    content_type: str
    tags: List[str] = field(default_factory=list)
    engagement_score: float = 5.0
    content_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class TimePreferences:
    preferred_tags: List[str] = field(default_factory=list)
    preferred_content_types: List[str] = field(default_factory=list)
    engagement_boost: float = 1.0

    @property
    def is_neutral(self) -> bool:
        return (
            not self.preferred_tags
            and not self.preferred_content_types
            and self.engagement_boost == 1.0
        )


@dataclass
class FeedbackRecord:
    user_id: str
    item_type: str
    item_id: str
    feedback: FeedbackType
    reason: Optional[str] = None
    session_id: Optional[str] = None
    position: Optional[int] = None
    variant_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["feedback"] = self.feedback.value
        return data
