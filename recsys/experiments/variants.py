from __future__ import annotations

from dataclasses import dataclass
from typing import List

from recsys.data.models import ABVariant, AlgorithmWeights

NEUTRAL_FEEDBACK_SCORE = 50.0


@dataclass(frozen=True)
class VariantConfig:
    name: str
    description: str
    weights: AlgorithmWeights
    traffic_percent: float
    is_control: bool = False


EXAMPLE_VARIANTS: List[VariantConfig] = [
    VariantConfig(
        name="social_priority",
        description="Prioritize content from followed users more heavily",
        weights=AlgorithmWeights(
            content=0.25, social=0.40, engagement=0.15, recency=0.10, quality=0.10, embedding=0.00
        ),
        traffic_percent=25,
    ),
    VariantConfig(
        name="quality_focus",
        description="Emphasize highly-cited and well-reviewed content",
        weights=AlgorithmWeights(
            content=0.25, social=0.15, engagement=0.15, recency=0.10, quality=0.35, embedding=0.00
        ),
        traffic_percent=25,
    ),
    VariantConfig(
        name="ml_embeddings",
        description="Use ML embeddings for semantic similarity",
        weights=AlgorithmWeights(
            content=0.20, social=0.20, engagement=0.15, recency=0.10, quality=0.10, embedding=0.25
        ),
        traffic_percent=25,
    ),
]


def feedback_score(positive: int, negative: int) -> float:
    total = positive + negative
    if total <= 0:
        return NEUTRAL_FEEDBACK_SCORE
    return positive / total * 100


def performance_score(variant: ABVariant) -> float:
    """综合得分 = 反馈好评率 * 0.6 + 点击率 * 0.4（无反馈时好评率取 50）"""
    fb = feedback_score(variant.total_positive_feedback, variant.total_negative_feedback)
    return fb * 0.6 + (variant.avg_click_through_rate or 0.0) * 0.4
