"""
推荐权重 A/B 实验管理

用户状态机：未分配 -> 已分配(分组) -> 分组停用后可重新分配。

- 分桶：hash(experiment_key, user_id) -> [0,100)，确定性、可复现
- 分配持久化走 ExperimentStore.create_assignment_if_absent（原子），缓存只做加速
- 实验记账失败一律回落对照组，不阻塞推荐主链路
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from recsys.cache.tier import CacheTier
from recsys.data.interfaces import ExperimentStore
from recsys.data.models import (
    ABAssignment,
    ABVariant,
    CONTROL_ASSIGNMENT,
    CONTROL_VARIANT_ID,
    FeedbackType,
    VariantAssignment,
)
from recsys.experiments.bucketing import bucket, pick_variant
from recsys.experiments.variants import EXAMPLE_VARIANTS, VariantConfig, performance_score


class ExperimentManager:
    def __init__(
        self,
        store: ExperimentStore,
        cache: CacheTier,
        *,
        experiment_key: str = "recommendation_weights",
        variant_ttl_seconds: int = 3600,
        timeout_seconds: float = 1.0,
    ):
        self.store = store
        self.cache = cache
        self.experiment_key = experiment_key
        self.variant_ttl_seconds = variant_ttl_seconds
        self.timeout_seconds = timeout_seconds

    # ========================================
    # 分流
    # ========================================
    async def get_variant(self, user_id: str) -> VariantAssignment:
        key = self.cache.keys.abtest(user_id)
        cached = await self.cache.get(key)
        if cached:
            try:
                return VariantAssignment.from_dict(cached)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(f"[ABTest] 分组缓存格式错误，重新计算 user={user_id}: {exc}")

        try:
            result = await asyncio.wait_for(self._resolve(user_id), timeout=self.timeout_seconds)
        except Exception as exc:
            logger.warning(f"[ABTest] 分组分配失败，本次使用对照组 user={user_id}: {exc!r}")
            return CONTROL_ASSIGNMENT

        if not result.is_control:
            await self.cache.set_with_ttl(key, result.to_dict(), self.variant_ttl_seconds)
        return result

    async def _resolve(self, user_id: str) -> VariantAssignment:
        existing = await self.store.load_assignment(user_id)
        if existing is not None:
            variant = await self.store.load_variant(existing.variant_id)
            if variant is not None and variant.is_active:
                return self._to_assignment(variant)

        active = await self.store.load_active_variants()
        if not active:
            return CONTROL_ASSIGNMENT

        draw = bucket(self.experiment_key, user_id)
        chosen = pick_variant(active, draw)
        if chosen is None:
            logger.debug(f"[ABTest] draw={draw:.2f} 超出总流量，使用对照组 user={user_id}")
            return CONTROL_ASSIGNMENT
        if chosen.weights is None:
            logger.warning(f"[ABTest] 分组 {chosen.id} 权重非法，使用对照组 user={user_id}")
            return CONTROL_ASSIGNMENT

        assignment, created = await self.store.create_assignment_if_absent(user_id, chosen.id)
        if created:
            logger.info(f"[ABTest] 新分配 user={user_id} -> {chosen.name}({chosen.id}) draw={draw:.2f}")
        if assignment.variant_id != chosen.id:
            # 并发请求或历史分配已落到另一个启用分组
            variant = await self.store.load_variant(assignment.variant_id)
            if variant is None:
                return CONTROL_ASSIGNMENT
            return self._to_assignment(variant)
        return self._to_assignment(chosen)

    @staticmethod
    def _to_assignment(variant: ABVariant) -> VariantAssignment:
        if variant.weights is None:
            logger.warning(f"[ABTest] 分组 {variant.id} 权重非法，使用对照组")
            return CONTROL_ASSIGNMENT
        return VariantAssignment(variant_id=variant.id, weights=variant.weights)

    async def get_assignment(self, user_id: str) -> Optional[ABAssignment]:
        return await self.store.load_assignment(user_id)

    # ========================================
    # 反馈与指标
    # ========================================
    async def record_feedback(
        self,
        user_id: str,
        variant_id: str,
        feedback: Union[FeedbackType, str],
        clicked: bool = False,
    ) -> bool:
        """展示数必加 1；点击/好评/差评按需加 1，并同步到分组汇总"""
        if not variant_id or variant_id == CONTROL_VARIANT_ID:
            return False
        positive = FeedbackType(feedback).is_positive
        try:
            ok = await self.store.record_feedback(user_id, variant_id, positive, clicked)
        except Exception as exc:
            logger.error(f"[ABTest] 记录实验反馈失败 user={user_id} variant={variant_id}: {exc!r}")
            return False
        if not ok:
            logger.warning(f"[ABTest] 用户没有该分组的分配记录 user={user_id} variant={variant_id}")
        return ok

    async def update_metrics(self, variant_id: str) -> Optional[float]:
        """重新计算分组点击率；无分配记录时保持不变并返回 None"""
        if not variant_id or variant_id == CONTROL_VARIANT_ID:
            return None
        count, shown, clicked = await self.store.assignment_totals(variant_id)
        if count == 0:
            return None
        ctr = (clicked / shown) * 100 if shown > 0 else 0.0
        await self.store.set_click_through_rate(variant_id, ctr)
        logger.debug(f"[ABTest] 分组 {variant_id} CTR={ctr:.2f}% (shown={shown}, clicked={clicked})")
        return ctr

    @staticmethod
    def performance_score(variant: ABVariant) -> float:
        return performance_score(variant)

    # ========================================
    # 分组管理
    # ========================================
    async def create_variant(self, config: VariantConfig) -> ABVariant:
        if not 0 <= config.traffic_percent <= 100:
            raise ValueError("traffic_percent 必须在 [0, 100] 之间")
        variant = await self.store.create_variant(
            config.name,
            config.weights,
            config.traffic_percent,
            description=config.description,
            is_control=config.is_control,
        )
        logger.info(f"[ABTest] 创建分组 {variant.name}({variant.id}) traffic={variant.traffic_percent}%")
        return variant

    async def deactivate_variant(self, variant_id: str) -> bool:
        """停用分组并清理所有分配过该分组的用户缓存，使其下次请求重新分流"""
        ok = await self.store.deactivate_variant(variant_id)
        if not ok:
            return False
        user_ids = await self.store.assigned_user_ids(variant_id)
        if user_ids:
            await self.cache.delete(*[self.cache.keys.abtest(u) for u in user_ids])
        logger.info(f"[ABTest] 分组 {variant_id} 已停用，清理 {len(user_ids)} 个用户的分组缓存")
        return True

    async def seed_example_variants(self) -> List[ABVariant]:
        """创建示例分组（按名称幂等）"""
        existing = {v.name for v in await self.store.list_variants()}
        created: List[ABVariant] = []
        for config in EXAMPLE_VARIANTS:
            if config.name in existing:
                continue
            created.append(await self.create_variant(config))
        return created

    async def get_results(self, variant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """分组实验报告；不指定 variant_id 时返回所有启用分组"""
        if variant_id:
            variant = await self.store.load_variant(variant_id)
            if variant is None:
                raise ValueError(f"variant not found: {variant_id}")
            variants = [variant]
        else:
            variants = await self.store.load_active_variants()

        reports: List[Dict[str, Any]] = []
        for v in variants:
            total_users, _, _ = await self.store.assignment_totals(v.id)
            reports.append(
                {
                    "id": v.id,
                    "name": v.name,
                    "description": v.description,
                    "weights": v.weights.to_config() if v.weights else None,
                    "isControl": v.is_control,
                    "isActive": v.is_active,
                    "trafficPercent": v.traffic_percent,
                    "totalAssignments": v.total_assignments,
                    "totalPositiveFeedback": v.total_positive_feedback,
                    "totalNegativeFeedback": v.total_negative_feedback,
                    "avgClickThroughRate": v.avg_click_through_rate,
                    "avgPositiveFeedbackPerUser": (
                        v.total_positive_feedback / total_users if total_users else 0.0
                    ),
                    "avgNegativeFeedbackPerUser": (
                        v.total_negative_feedback / total_users if total_users else 0.0
                    ),
                    "performanceScore": performance_score(v),
                }
            )
        return reports
