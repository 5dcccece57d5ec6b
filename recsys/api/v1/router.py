# 路由汇总
from fastapi import APIRouter

from recsys.api.v1.endpoints import experiments, recommendations

api_router = APIRouter()

# 内容推荐 (访问地址: /api/v1/recommendations/...)
api_router.include_router(recommendations.router, prefix="/recommendations", tags=["内容推荐模块"])

# 推荐权重实验 (访问地址: /api/v1/experiments/...)
api_router.include_router(experiments.router, prefix="/experiments", tags=["推荐实验模块"])
