"""
依赖注入

推荐链路的各组件在这里按配置组装成进程级单例；
单测通过 app.dependency_overrides 替换 get_recommendation_service 等入口。
"""

from __future__ import annotations

from functools import lru_cache

from loguru import logger

from recsys.cache.keys import CacheKeys
from recsys.cache.tier import CacheTier, NullCacheTier, RedisCacheTier
from recsys.core.config import settings
from recsys.core.database import SessionLocal
from recsys.core.redis_client import redis_client
from recsys.data.interfaces import CandidateSource, ProfileSource, VectorIndex
from recsys.data.memory_store import InMemoryCandidateSource, InMemoryProfileSource
from recsys.data.sql_store import SqlEngagementStore, SqlExperimentStore, SqlFeedbackStore
from recsys.experiments.manager import ExperimentManager
from recsys.infra.vector_index import DisabledVectorIndex, MilvusVectorIndex
from recsys.recommender.candidates import CandidateRetriever
from recsys.recommender.embedding_matcher import EmbeddingMatcher
from recsys.recommender.encoder import Encoder, HashingEncoder, build_encoder
from recsys.recommender.personalizer import TimeBasedPersonalizer
from recsys.recommender.profile import ProfileBuilder
from recsys.recommender.scorer import Scorer
from recsys.services.feedback_service import FeedbackService
from recsys.services.recommendation_service import RecommendationService


@lru_cache(maxsize=None)
def get_cache() -> CacheTier:
    keys = CacheKeys.with_prefix(settings.CACHE_KEY_PREFIX)
    if settings.REDIS_DISABLED:
        return NullCacheTier(keys)
    return RedisCacheTier(redis_client, keys, timeout_seconds=settings.CACHE_TIMEOUT_SECONDS)


@lru_cache(maxsize=None)
def get_vector_index() -> VectorIndex:
    if not settings.EMBEDDINGS_ENABLED:
        return DisabledVectorIndex()
    # 连接在应用启动时建立（见 main.startup_event）
    return MilvusVectorIndex(settings.MILVUS_COLLECTION)


@lru_cache(maxsize=None)
def get_encoder() -> Encoder:
    if not settings.EMBEDDINGS_ENABLED:
        # 向量召回关闭时不会编码
        return HashingEncoder(settings.EMBEDDING_DIM)
    return build_encoder(
        settings.EMBEDDING_PROVIDER,
        dim=settings.EMBEDDING_DIM,
        api_key=settings.OPENAI_API_KEY,
        model=settings.EMBEDDING_MODEL,
        base_url=settings.OPENAI_API_BASE,
    )


@lru_cache(maxsize=None)
def get_profile_source() -> ProfileSource:
    # 平台的用户/关注/点赞数据由外部系统提供；默认进程内实现用于本地演示
    logger.warning(
        "[Deps] 画像数据源为空的进程内实现，所有用户都会返回 USER_NOT_FOUND；"
        "接入平台时请替换 get_profile_source 的实现"
    )
    return InMemoryProfileSource()


@lru_cache(maxsize=None)
def get_candidate_source() -> CandidateSource:
    logger.warning("[Deps] 候选数据源为空的进程内实现；接入平台时请替换 get_candidate_source 的实现")
    return InMemoryCandidateSource()


@lru_cache(maxsize=None)
def get_experiment_manager() -> ExperimentManager:
    return ExperimentManager(
        SqlExperimentStore(SessionLocal),
        get_cache(),
        experiment_key=settings.AB_EXPERIMENT_KEY,
        variant_ttl_seconds=settings.VARIANT_CACHE_TTL,
        timeout_seconds=settings.EXPERIMENT_TIMEOUT_SECONDS,
    )


@lru_cache(maxsize=None)
def get_personalizer() -> TimeBasedPersonalizer:
    return TimeBasedPersonalizer(SqlEngagementStore(SessionLocal))


@lru_cache(maxsize=None)
def get_recommendation_service() -> RecommendationService:
    cache = get_cache()
    return RecommendationService(
        profiles=ProfileBuilder(
            get_profile_source(),
            cache,
            ttl_seconds=settings.PROFILE_CACHE_TTL,
            similar_ttl_seconds=settings.SIMILAR_USERS_CACHE_TTL,
            timeout_seconds=settings.PROFILE_TIMEOUT_SECONDS,
        ),
        candidates=CandidateRetriever(
            get_candidate_source(),
            pool_size=settings.CANDIDATE_POOL_SIZE,
            timeout_seconds=settings.CANDIDATE_TIMEOUT_SECONDS,
        ),
        scorer=Scorer(
            parallel_threshold=settings.SCORING_PARALLEL_THRESHOLD,
            max_workers=settings.SCORING_MAX_WORKERS,
        ),
        embeddings=EmbeddingMatcher(
            get_vector_index(),
            get_encoder(),
            cache=cache,
            query_ttl_seconds=settings.QUERY_VECTOR_CACHE_TTL,
            min_similarity=settings.EMBEDDING_MIN_SIMILARITY,
            timeout_seconds=settings.EMBEDDING_TIMEOUT_SECONDS,
        ),
        personalizer=get_personalizer(),
        experiments=get_experiment_manager(),
        cache=cache,
        cache_ttl_seconds=settings.RECOMMENDATION_CACHE_TTL,
    )


@lru_cache(maxsize=None)
def get_feedback_service() -> FeedbackService:
    return FeedbackService(
        SqlFeedbackStore(SessionLocal),
        get_experiment_manager(),
        get_personalizer(),
        get_cache(),
    )
