# 【入口】推荐服务启动点
import sys

from fastapi import FastAPI
from loguru import logger

from recsys.api.deps import get_recommendation_service, get_vector_index
from recsys.api.v1.router import api_router
from recsys.core.config import settings
from recsys.core.redis_client import redis_client
from recsys.infra.vector_index import MilvusVectorIndex


# ========================================
# Loguru 日志配置
# ========================================
def setup_logger():
    """配置 loguru 日志系统"""
    logger.remove()

    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.LOG_LEVEL,
        colorize=True,
    )

    if settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            rotation="100 MB",
            retention="10 days",
            compression="zip",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level=settings.LOG_LEVEL,
        )

    logger.info("Loguru 日志系统初始化完成")


setup_logger()


# ========================================
# FastAPI 应用配置
# ========================================
app = FastAPI(
    title="Academic Recommendation Service - 学术内容推荐",
    description="多因子打分 + 权重 A/B 实验 + 分时段个性化 + 可选向量召回",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# 统一加前缀 /api/v1
app.include_router(api_router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    """应用启动事件"""
    logger.info("=" * 60)
    logger.info("推荐服务正在启动...")
    logger.info(f"调试模式: {settings.DEBUG}")
    logger.info(f"日志级别: {settings.LOG_LEVEL}")
    logger.info(f"向量召回: {'开启' if settings.EMBEDDINGS_ENABLED else '关闭'}")
    logger.info("=" * 60)

    await redis_client.connect()
    index = get_vector_index()
    if isinstance(index, MilvusVectorIndex):
        index.connect()
    # 提前组装推荐链路，数据源/编码器的配置告警在启动日志中输出
    get_recommendation_service()


@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭事件"""
    logger.info("推荐服务正在关闭...")
    await redis_client.close()
    index = get_vector_index()
    if isinstance(index, MilvusVectorIndex):
        index.close()


@app.get("/")
def health_check():
    """健康检查端点"""
    return {
        "status": "ok",
        "message": "Recommendation service is running!",
        "version": "1.0.0",
    }
