"""
A/B 实验管理接口 Schema（字段对外使用 camelCase）
"""

from __future__ import annotations

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from recsys.data.models import ABAssignment, ABVariant, AlgorithmWeights


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """通用接口响应包装。"""

    code: int = 200
    msg: str = "success"
    data: T

    model_config = ConfigDict(populate_by_name=True)


class WeightsPayload(BaseModel):
    content_weight: float = Field(..., ge=0, alias="contentWeight")
    social_weight: float = Field(..., ge=0, alias="socialWeight")
    engagement_weight: float = Field(..., ge=0, alias="engagementWeight")
    recency_weight: float = Field(..., ge=0, alias="recencyWeight")
    quality_weight: float = Field(..., ge=0, alias="qualityWeight")
    embedding_weight: float = Field(0.0, ge=0, alias="embeddingWeight")

    model_config = ConfigDict(populate_by_name=True)

    def to_weights(self) -> AlgorithmWeights:
        return AlgorithmWeights(
            content=self.content_weight,
            social=self.social_weight,
            engagement=self.engagement_weight,
            recency=self.recency_weight,
            quality=self.quality_weight,
            embedding=self.embedding_weight,
        )


class CreateVariantRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str = ""
    weights: WeightsPayload
    traffic_percent: float = Field(..., ge=0, le=100, alias="trafficPercent")
    is_control: bool = Field(False, alias="isControl")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "social_priority",
                "description": "Prioritize content from followed users more heavily",
                "weights": {
                    "contentWeight": 0.25,
                    "socialWeight": 0.40,
                    "engagementWeight": 0.15,
                    "recencyWeight": 0.10,
                    "qualityWeight": 0.10,
                    "embeddingWeight": 0.0,
                },
                "trafficPercent": 25,
                "isControl": False,
            }
        },
    )


class VariantResponse(BaseModel):
    id: str
    name: str
    description: str = ""
    weights: Optional[dict] = None
    is_control: bool = Field(False, alias="isControl")
    is_active: bool = Field(True, alias="isActive")
    traffic_percent: float = Field(..., alias="trafficPercent")
    total_assignments: int = Field(0, alias="totalAssignments")
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_variant(cls, v: ABVariant) -> "VariantResponse":
        return cls(
            id=v.id,
            name=v.name,
            description=v.description,
            weights=v.weights.to_config() if v.weights else None,
            is_control=v.is_control,
            is_active=v.is_active,
            traffic_percent=v.traffic_percent,
            total_assignments=v.total_assignments,
            created_at=v.created_at,
        )


class VariantResultResponse(BaseModel):
    id: str
    name: str
    description: str = ""
    weights: Optional[dict] = None
    is_control: bool = Field(..., alias="isControl")
    is_active: bool = Field(..., alias="isActive")
    traffic_percent: float = Field(..., alias="trafficPercent")
    total_assignments: int = Field(..., alias="totalAssignments")
    total_positive_feedback: int = Field(..., alias="totalPositiveFeedback")
    total_negative_feedback: int = Field(..., alias="totalNegativeFeedback")
    avg_click_through_rate: float = Field(..., alias="avgClickThroughRate")
    avg_positive_feedback_per_user: float = Field(..., alias="avgPositiveFeedbackPerUser")
    avg_negative_feedback_per_user: float = Field(..., alias="avgNegativeFeedbackPerUser")
    performance_score: float = Field(..., alias="performanceScore")

    model_config = ConfigDict(populate_by_name=True)


class MetricsResponse(BaseModel):
    variant_id: str = Field(..., alias="variantId")
    avg_click_through_rate: Optional[float] = Field(None, alias="avgClickThroughRate")

    model_config = ConfigDict(populate_by_name=True)


class AssignmentResponse(BaseModel):
    user_id: str = Field(..., alias="userId")
    variant_id: str = Field(..., alias="variantId")
    weights: dict
    persisted_variant_id: Optional[str] = Field(None, alias="persistedVariantId")
    recommendations_shown: int = Field(0, alias="recommendationsShown")
    recommendations_clicked: int = Field(0, alias="recommendationsClicked")
    positive_feedback: int = Field(0, alias="positiveFeedback")
    negative_feedback: int = Field(0, alias="negativeFeedback")

    model_config = ConfigDict(populate_by_name=True)


class SeedResponse(BaseModel):
    created: List[VariantResponse] = Field(default_factory=list)


def assignment_counters(a: Optional[ABAssignment]) -> dict:
    if a is None:
        return {}
    return {
        "persisted_variant_id": a.variant_id,
        "recommendations_shown": a.recommendations_shown,
        "recommendations_clicked": a.recommendations_clicked,
        "positive_feedback": a.positive_feedback,
        "negative_feedback": a.negative_feedback,
    }
