"""
推荐接口的请求和响应 Schema
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from recsys.data.models import FeedbackType


FeedbackItemType = Literal["post", "paper", "group", "project", "user"]
EngagementContentType = Literal["post", "paper", "group", "project"]


# ============= 推荐结果 =============

class EngagementCountersResponse(BaseModel):
    reactions: int = 0
    views: int = 0
    bookmarks: int = 0
    citations: int = 0
    reviews: int = 0
    avg_review_rating: float = 0.0


class ContentItemResponse(BaseModel):
    """推荐内容详情（帖子或论文）"""
    id: str
    type: Literal["post", "paper"]
    title: Optional[str] = None
    text: str = ""
    tags: List[str] = Field(default_factory=list)
    author_ids: List[str] = Field(default_factory=list)
    venue: Optional[str] = None
    department: Optional[str] = None
    post_type: Optional[str] = None
    counters: EngagementCountersResponse = Field(default_factory=EngagementCountersResponse)
    created_at: datetime


class RecommendedItemResponse(BaseModel):
    """单条推荐：内容详情与打分结果分开返回"""
    item: ContentItemResponse
    type: Literal["post", "paper"]
    score: float = Field(..., ge=0, description="推荐分数")
    reasons: List[str] = Field(default_factory=list, description="推荐理由（有序）")
    position: int = Field(..., ge=1, description="列表位置（1-based）")
    session_id: str
    variant_id: str


class RecommendationListResponse(BaseModel):
    recommendations: List[RecommendedItemResponse] = Field(default_factory=list)
    total: int
    session_id: str = Field(..., description="推荐会话ID，反馈时回传")
    variant_id: str = Field(..., description="本次使用的实验分组，control 表示对照组")
    time_optimized: bool = Field(False, description="是否应用了分时段个性化")
    cached: bool = Field(False, description="是否命中缓存")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "recommendations": [
                    {
                        "item": {
                            "id": "post_001",
                            "type": "post",
                            "title": "Transformer 在医学影像中的应用",
                            "text": "...",
                            "tags": ["AI", "Vision"],
                            "author_ids": ["u_42"],
                            "counters": {"reactions": 12, "views": 300, "bookmarks": 3},
                            "created_at": "2026-01-14T12:00:00",
                        },
                        "type": "post",
                        "score": 21.7,
                        "reasons": ["Matches your research interests", "From researchers you follow"],
                        "position": 1,
                        "session_id": "u_1-1768392000000",
                        "variant_id": "control",
                    }
                ],
                "total": 1,
                "session_id": "u_1-1768392000000",
                "variant_id": "control",
                "time_optimized": False,
                "cached": False,
            }
        }
    )


class SimilarUsersResponse(BaseModel):
    user_id: str
    similar_user_ids: List[str] = Field(default_factory=list)
    total: int


# ============= 反馈 / 埋点 =============

class FeedbackRequest(BaseModel):
    """推荐反馈"""
    user_id: str = Field(..., min_length=1, description="用户ID")
    item_type: FeedbackItemType = Field(..., description="内容类型")
    item_id: str = Field(..., min_length=1, description="内容ID")
    feedback: FeedbackType = Field(..., description="positive / negative / not_interested")
    reason: Optional[str] = Field(None, max_length=500)
    session_id: Optional[str] = Field(None, description="推荐会话ID")
    position: Optional[int] = Field(None, ge=1, description="推荐位置（1-based）")
    variant_id: Optional[str] = Field(None, description="实验分组ID")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "u_1",
                "item_type": "post",
                "item_id": "post_001",
                "feedback": "positive",
                "session_id": "u_1-1768392000000",
                "position": 1,
                "variant_id": "var_3f9a1c2b4d5e",
            }
        }
    )


class FeedbackAckResponse(BaseModel):
    success: bool = True
    message: str = "Feedback recorded"


class FeedbackItemResponse(BaseModel):
    user_id: str
    item_type: str
    item_id: str
    feedback: FeedbackType
    reason: Optional[str] = None
    session_id: Optional[str] = None
    position: Optional[int] = None
    variant_id: Optional[str] = None
    created_at: datetime


class FeedbackListResponse(BaseModel):
    feedback: List[FeedbackItemResponse] = Field(default_factory=list)
    total: int


class TrackEngagementRequest(BaseModel):
    """带时间上下文的互动埋点"""
    user_id: str = Field(..., min_length=1)
    content_type: EngagementContentType
    content_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    engagement_score: float = Field(5.0, ge=0, le=10, description="互动强度（0-10）")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "u_1",
                "content_type": "paper",
                "content_id": "paper_007",
                "tags": ["NLP"],
                "engagement_score": 8,
            }
        }
    )


class TrackEngagementResponse(BaseModel):
    success: bool = True
    hour_of_day: int
    day_of_week: int


# ============= 健康检查 / 错误 =============

class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "recommendations"
    embeddings_enabled: bool = False
    cache: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


class ErrorResponse(BaseModel):
    """错误响应"""
    success: bool = Field(False, description="请求失败")
    error_code: str = Field(..., description="错误代码")
    error_message: str = Field(..., description="错误信息")
    timestamp: datetime = Field(default_factory=datetime.now, description="错误时间")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error_code": "USER_NOT_FOUND",
                "error_message": "User not found: u_404",
                "timestamp": "2026-01-14T12:00:00",
            }
        }
    )
