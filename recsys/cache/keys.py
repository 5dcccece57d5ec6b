from __future__ import annotations

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class CacheKeys:
    """
    推荐模块 Redis Key 集合（可选前缀用于环境隔离）。
    """

    recommendation_prefix: str = "rec:user:"
    profile_prefix: str = "profile:"
    similar_prefix: str = "similar:"
    abtest_prefix: str = "abtest:"
    query_vector_prefix: str = "embedding:query:"

    @classmethod
    def with_prefix(cls, prefix: str) -> "CacheKeys":
        p = prefix or ""
        return cls(
            recommendation_prefix=f"{p}rec:user:",
            profile_prefix=f"{p}profile:",
            similar_prefix=f"{p}similar:",
            abtest_prefix=f"{p}abtest:",
            query_vector_prefix=f"{p}embedding:query:",
        )

    def recommendations(self, user_id: str, rec_type: str) -> str:
        return f"{self.recommendation_prefix}{user_id}:{rec_type}"

    def profile(self, user_id: str) -> str:
        return f"{self.profile_prefix}{user_id}"

    def similar_users(self, user_id: str) -> str:
        return f"{self.similar_prefix}{user_id}"

    def abtest(self, user_id: str) -> str:
        return f"{self.abtest_prefix}{user_id}"

    def query_vector(self, digest: str) -> str:
        """按兴趣文本摘要缓存查询向量，兴趣相同的用户共用一条"""
        return f"{self.query_vector_prefix}{digest}"

    def user_scoped(self, user_id: str) -> List[str]:
        """用户有新互动时需要失效的 key（三类推荐 + 画像）"""
        return [
            self.recommendations(user_id, "posts"),
            self.recommendations(user_id, "papers"),
            self.recommendations(user_id, "mixed"),
            self.profile(user_id),
        ]
