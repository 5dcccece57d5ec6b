"""
推荐权重 A/B 实验管理端点
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from recsys.api.deps import get_experiment_manager
from recsys.core.exceptions import StoreUnavailableError
from recsys.experiments.manager import ExperimentManager
from recsys.experiments.variants import VariantConfig
from recsys.schemas.experiment_schema import (
    ApiResponse,
    AssignmentResponse,
    CreateVariantRequest,
    MetricsResponse,
    SeedResponse,
    VariantResponse,
    VariantResultResponse,
    assignment_counters,
)


router = APIRouter()


@router.post("/variants", response_model=ApiResponse[VariantResponse], summary="创建实验分组")
async def create_variant(
    req: CreateVariantRequest,
    manager: ExperimentManager = Depends(get_experiment_manager),
) -> ApiResponse[VariantResponse]:
    try:
        variant = await manager.create_variant(
            VariantConfig(
                name=req.name,
                description=req.description,
                weights=req.weights.to_weights(),
                traffic_percent=req.traffic_percent,
                is_control=req.is_control,
            )
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=VariantResponse.from_variant(variant))


@router.get("/results", response_model=ApiResponse[List[VariantResultResponse]], summary="实验结果")
async def get_results(
    variant_id: Optional[str] = Query(None, alias="variantId", description="不传则返回所有启用分组"),
    manager: ExperimentManager = Depends(get_experiment_manager),
) -> ApiResponse[List[VariantResultResponse]]:
    try:
        reports = await manager.get_results(variant_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=[VariantResultResponse(**r) for r in reports])


@router.post("/variants/{variant_id}/deactivate", response_model=ApiResponse[dict], summary="停用分组")
async def deactivate_variant(
    variant_id: str,
    manager: ExperimentManager = Depends(get_experiment_manager),
) -> ApiResponse[dict]:
    try:
        ok = await manager.deactivate_variant(variant_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if not ok:
        raise HTTPException(status_code=404, detail=f"variant not found: {variant_id}")
    return ApiResponse(data={"variantId": variant_id, "isActive": False})


@router.post(
    "/variants/{variant_id}/metrics",
    response_model=ApiResponse[MetricsResponse],
    summary="重新计算分组点击率",
)
async def update_metrics(
    variant_id: str,
    manager: ExperimentManager = Depends(get_experiment_manager),
) -> ApiResponse[MetricsResponse]:
    try:
        ctr = await manager.update_metrics(variant_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=MetricsResponse(variant_id=variant_id, avg_click_through_rate=ctr))


@router.get(
    "/assignments/{user_id}",
    response_model=ApiResponse[AssignmentResponse],
    summary="查询用户当前分组（必要时触发分流）",
)
async def get_assignment(
    user_id: str,
    manager: ExperimentManager = Depends(get_experiment_manager),
) -> ApiResponse[AssignmentResponse]:
    assignment = await manager.get_variant(user_id)
    try:
        persisted = await manager.get_assignment(user_id)
    except StoreUnavailableError as exc:
        logger.warning(f"[ABTest] 读取分配记录失败 user={user_id}: {exc}")
        persisted = None
    return ApiResponse(
        data=AssignmentResponse(
            user_id=user_id,
            variant_id=assignment.variant_id,
            weights=assignment.weights.to_config(),
            **assignment_counters(persisted),
        )
    )


@router.post("/seed", response_model=ApiResponse[SeedResponse], summary="创建示例分组")
async def seed_variants(
    manager: ExperimentManager = Depends(get_experiment_manager),
) -> ApiResponse[SeedResponse]:
    try:
        created = await manager.seed_example_variants()
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ApiResponse(data=SeedResponse(created=[VariantResponse.from_variant(v) for v in created]))
