from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from recsys.data.models import RecommendationScore


def merge_recommendations(
    sources: Sequence[Sequence[RecommendationScore]],
    weights: Optional[Sequence[float]],
    limit: int,
) -> List[RecommendationScore]:
    """
    多路推荐列表加权合并（纯函数，不修改入参）

    - 首次出现：score = new * weight
    - 再次出现：score = (existing + new * weight) / 2，理由按出现顺序去重合并
    - 缺失的权重按 1.0 处理
    - 稳定排序（同分保持首次出现顺序），截断到 limit
    """
    if limit <= 0:
        return []

    merged: Dict[str, RecommendationScore] = {}
    for idx, source in enumerate(sources):
        weight = 1.0
        if weights is not None and idx < len(weights):
            weight = float(weights[idx])
        for rec in source:
            existing = merged.get(rec.item_id)
            if existing is None:
                merged[rec.item_id] = RecommendationScore(
                    item_id=rec.item_id,
                    item_type=rec.item_type,
                    score=rec.score * weight,
                    reasons=list(dict.fromkeys(rec.reasons)),
                )
                continue
            existing.score = (existing.score + rec.score * weight) / 2
            for reason in rec.reasons:
                if reason not in existing.reasons:
                    existing.reasons.append(reason)

    ranked = sorted(merged.values(), key=lambda r: r.score, reverse=True)
    return ranked[:limit]
