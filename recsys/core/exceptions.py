"""
推荐服务的领域异常

接口层按异常类型映射 HTTP 状态码：
- UserNotFoundError -> 404
- StoreUnavailableError -> 503
- InvalidWeightsError -> 400
"""

from __future__ import annotations


class RecommendationError(Exception):
    """推荐模块异常基类"""


class UserNotFoundError(RecommendationError):
    """用户画像不存在，无法生成推荐"""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class StoreUnavailableError(RecommendationError):
    """画像/候选等外部存储不可用（含超时）"""

    def __init__(self, store: str, reason: str = ""):
        message = f"{store} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.store = store
        self.reason = reason


class InvalidWeightsError(RecommendationError, ValueError):
    """权重配置非法（负数、非有限数或缺字段）"""
