# 读取 .env 配置
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Database
    DB_SERVER: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "rec_user"
    DB_PASSWORD: str = "rec_password"
    DB_NAME: str = "rec_data"
    # 显式指定时覆盖上面的 MySQL 拼接（例如 sqlite:///./rec.db）
    DATABASE_URL: Optional[str] = None

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_UNIX_SOCKET: Optional[str] = None
    REDIS_DISABLED: bool = False
    CACHE_KEY_PREFIX: str = ""

    # Milvus
    MILVUS_HOST: str = "localhost"
    MILVUS_PORT: str = "19530"
    MILVUS_USER: str = ""
    MILVUS_PASSWORD: str = ""
    MILVUS_SECURE: bool = False
    MILVUS_COLLECTION: str = "content_embeddings"
    EMBEDDINGS_ENABLED: bool = False
    EMBEDDING_DIM: int = 384

    # 查询向量编码（需与离线写入 Milvus 的内容向量同一模型）
    EMBEDDING_PROVIDER: str = "openai"  # openai / local
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    OPENAI_API_KEY: str = ""
    OPENAI_API_BASE: Optional[str] = None

    # 缓存 TTL（秒）
    RECOMMENDATION_CACHE_TTL: int = 300
    PROFILE_CACHE_TTL: int = 3600
    VARIANT_CACHE_TTL: int = 3600
    SIMILAR_USERS_CACHE_TTL: int = 3600
    QUERY_VECTOR_CACHE_TTL: int = 3600

    # 外部调用超时（秒）
    PROFILE_TIMEOUT_SECONDS: float = 2.0
    CANDIDATE_TIMEOUT_SECONDS: float = 3.0
    CACHE_TIMEOUT_SECONDS: float = 0.5
    EMBEDDING_TIMEOUT_SECONDS: float = 1.5
    EXPERIMENT_TIMEOUT_SECONDS: float = 1.0

    # 算法参数
    CANDIDATE_POOL_SIZE: int = 200
    SCORING_PARALLEL_THRESHOLD: int = 64
    SCORING_MAX_WORKERS: int = 4
    EMBEDDING_MIN_SIMILARITY: float = 0.6
    AB_EXPERIMENT_KEY: str = "recommendation_weights"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # 忽略多余的环境变量
    )

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        # 格式: mysql+pymysql://用户名:密码@地址:端口/数据库名
        return (
            f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_SERVER}:{self.DB_PORT}/{self.DB_NAME}"
        )


settings = Settings()
