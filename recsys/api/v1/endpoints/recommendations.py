"""
内容推荐 API 端点

- 个性化推荐（帖子 / 论文 / 混合）
- 推荐反馈、反馈历史、分时段互动埋点
- 相似用户、健康检查
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from loguru import logger

from recsys.api.deps import (
    get_cache,
    get_feedback_service,
    get_recommendation_service,
    get_vector_index,
)
from recsys.cache.tier import CacheTier
from recsys.core.exceptions import StoreUnavailableError, UserNotFoundError
from recsys.data.interfaces import VectorIndex
from recsys.data.models import RecommendationType
from recsys.schemas.recommendation_schema import (
    FeedbackAckResponse,
    FeedbackItemResponse,
    FeedbackListResponse,
    FeedbackRequest,
    HealthResponse,
    RecommendationListResponse,
    SimilarUsersResponse,
    TrackEngagementRequest,
    TrackEngagementResponse,
)
from recsys.services.feedback_service import FeedbackService
from recsys.services.recommendation_service import RecommendationService


router = APIRouter()


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error_code": code, "error_message": message})


@router.get(
    "",
    response_model=RecommendationListResponse,
    summary="获取个性化推荐",
    description="多因子打分 + 实验权重 + 分时段个性化；mixed 类型可叠加向量召回",
)
async def get_recommendations(
    user_id: str = Query(..., min_length=1, description="用户ID"),
    type: RecommendationType = Query(RecommendationType.MIXED, description="posts / papers / mixed"),
    limit: int = Query(20, ge=1, le=100, description="返回条数（默认20）"),
    exclude: Optional[str] = Query(None, description="逗号分隔的排除ID"),
    cache: bool = Query(True, description="是否使用缓存"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> RecommendationListResponse:
    exclude_ids = [x.strip() for x in (exclude or "").split(",") if x.strip()]
    try:
        payload = await service.get_recommendations(
            user_id=user_id,
            rec_type=type,
            limit=limit,
            exclude_ids=exclude_ids,
            use_cache=cache,
        )
        return RecommendationListResponse(**payload)
    except UserNotFoundError as exc:
        raise _error(404, "USER_NOT_FOUND", str(exc)) from exc
    except StoreUnavailableError as exc:
        logger.warning(f"推荐依赖存储不可用: {exc}")
        raise _error(503, "STORE_UNAVAILABLE", str(exc)) from exc
    except ValueError as exc:
        raise _error(400, "INVALID_PARAMETER", str(exc)) from exc
    except Exception as exc:
        logger.error(f"获取推荐失败 user={user_id}: {exc!r}")
        raise _error(500, "INTERNAL_ERROR", f"推荐服务异常: {exc}") from exc


@router.post("/feedback", response_model=FeedbackAckResponse, summary="提交推荐反馈")
async def submit_feedback(
    req: FeedbackRequest,
    background_tasks: BackgroundTasks,
    service: FeedbackService = Depends(get_feedback_service),
) -> FeedbackAckResponse:
    try:
        await service.submit_feedback(
            req.user_id,
            req.item_type,
            req.item_id,
            req.feedback,
            reason=req.reason,
            session_id=req.session_id,
            position=req.position,
            variant_id=req.variant_id,
        )
    except StoreUnavailableError as exc:
        raise _error(503, "STORE_UNAVAILABLE", str(exc)) from exc
    except Exception as exc:
        logger.error(f"记录反馈失败 user={req.user_id}: {exc!r}")
        raise _error(500, "INTERNAL_ERROR", f"记录反馈失败: {exc}") from exc

    # 实验记账不阻塞响应
    if req.variant_id:
        background_tasks.add_task(
            service.record_experiment_feedback, req.user_id, req.variant_id, req.feedback
        )
    return FeedbackAckResponse()


@router.get("/feedback", response_model=FeedbackListResponse, summary="查询反馈历史")
async def list_feedback(
    user_id: str = Query(..., min_length=1, description="用户ID"),
    item_type: Optional[str] = Query(None, description="按内容类型过滤"),
    limit: int = Query(50, ge=1, le=200),
    service: FeedbackService = Depends(get_feedback_service),
) -> FeedbackListResponse:
    try:
        records = await service.list_feedback(user_id, item_type=item_type, limit=limit)
    except StoreUnavailableError as exc:
        raise _error(503, "STORE_UNAVAILABLE", str(exc)) from exc
    except Exception as exc:
        logger.error(f"查询反馈失败 user={user_id}: {exc!r}")
        raise _error(500, "INTERNAL_ERROR", str(exc)) from exc
    items = [FeedbackItemResponse(**r.to_dict()) for r in records]
    return FeedbackListResponse(feedback=items, total=len(items))


@router.post("/track", response_model=TrackEngagementResponse, summary="记录分时段互动")
async def track_engagement(
    req: TrackEngagementRequest,
    service: FeedbackService = Depends(get_feedback_service),
) -> TrackEngagementResponse:
    try:
        record = await service.track_engagement(
            req.user_id,
            req.content_type,
            req.content_id,
            tags=req.tags,
            engagement_score=req.engagement_score,
        )
    except StoreUnavailableError as exc:
        raise _error(503, "STORE_UNAVAILABLE", str(exc)) from exc
    except Exception as exc:
        logger.error(f"记录互动失败 user={req.user_id}: {exc!r}")
        raise _error(500, "INTERNAL_ERROR", str(exc)) from exc
    return TrackEngagementResponse(hour_of_day=record.hour_of_day, day_of_week=record.day_of_week)


@router.get("/similar-users", response_model=SimilarUsersResponse, summary="研究兴趣相近的用户")
async def similar_users(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    service: RecommendationService = Depends(get_recommendation_service),
) -> SimilarUsersResponse:
    try:
        ids = await service.find_similar_users(user_id, limit)
    except UserNotFoundError as exc:
        raise _error(404, "USER_NOT_FOUND", str(exc)) from exc
    except StoreUnavailableError as exc:
        raise _error(503, "STORE_UNAVAILABLE", str(exc)) from exc
    except Exception as exc:
        logger.error(f"查询相似用户失败 user={user_id}: {exc!r}")
        raise _error(500, "INTERNAL_ERROR", str(exc)) from exc
    return SimilarUsersResponse(user_id=user_id, similar_user_ids=ids, total=len(ids))


@router.get("/health", response_model=HealthResponse, summary="推荐服务健康检查")
async def health_check(
    cache: CacheTier = Depends(get_cache),
    index: VectorIndex = Depends(get_vector_index),
) -> HealthResponse:
    return HealthResponse(embeddings_enabled=index.enabled, cache=await cache.stats())
