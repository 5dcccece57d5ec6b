"""
查询向量编码器

生产环境的内容向量由离线任务写入 Milvus；在线侧只需要把用户兴趣编码成查询向量，
且必须与内容向量使用同一个模型（EMBEDDING_PROVIDER / EMBEDDING_MODEL）。

- OpenAIEncoder：OpenAI Embedding API（默认 text-embedding-3-small）
- HashingEncoder：确定性的哈希编码，仅保证同一文本得到同一向量（本地演示 / 未配置 API Key）
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import List, Optional

from loguru import logger
from openai import AsyncOpenAI

MAX_TEXT_LENGTH = 8000


class Encoder(ABC):
    @property
    @abstractmethod
    def dim(self) -> int:
        ...

    @abstractmethod
    async def encode(self, text: str) -> List[float]:
        ...


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def simple_hash(text: str) -> int:
    """32 位有符号滚动哈希：h = h*31 + ord(ch)"""
    h = 0
    for ch in text:
        h = _int32((h << 5) - h + ord(ch))
    return h


class HashingEncoder(Encoder):
    def __init__(self, dim: int = 384):
        if dim <= 0:
            raise ValueError("dim 必须为正整数")
        self._dim = dim

    @property
    def dim(self) -> int:
        return self._dim

    async def encode(self, text: str) -> List[float]:
        h = simple_hash((text or "")[:MAX_TEXT_LENGTH])
        return [math.sin(h + i) * 0.5 for i in range(self._dim)]


class OpenAIEncoder(Encoder):
    """
    OpenAI Embedding 编码器

    text-embedding-3 系列通过 dimensions 参数截断到 EMBEDDING_DIM，
    保证与 Milvus 集合的向量维度一致。
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dim: int = 1536,
        *,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None:
            client_params = {"api_key": api_key}
            if base_url:
                client_params["base_url"] = base_url
                logger.info(f"[Encoder] 使用自定义 OpenAI API 端点: {base_url}")
            client = AsyncOpenAI(**client_params)
        self.client = client
        self.model = model
        self._dim = dim
        logger.info(f"[Encoder] OpenAI Embedding 初始化完成，模型: {self.model} dim={self._dim}")

    @property
    def dim(self) -> int:
        return self._dim

    async def encode(self, text: str) -> List[float]:
        params = {"input": (text or "")[:MAX_TEXT_LENGTH], "model": self.model}
        if self.model.startswith("text-embedding-3"):
            params["dimensions"] = self._dim
        try:
            response = await self.client.embeddings.create(**params)
        except Exception as e:
            logger.error(f"[Encoder] 文本向量化失败: {e}")
            raise

        vector = list(response.data[0].embedding)
        if len(vector) != self._dim:
            raise ValueError(f"向量维度不一致: 期望 {self._dim}，实际 {len(vector)}")
        return vector


def build_encoder(
    provider: str,
    *,
    dim: int,
    api_key: str = "",
    model: str = "text-embedding-3-small",
    base_url: Optional[str] = None,
) -> Encoder:
    """按配置选择编码器；openai 未配置 API Key 时回退到哈希编码"""
    provider = (provider or "").lower()
    if provider == "openai":
        if api_key:
            return OpenAIEncoder(api_key, model, dim, base_url=base_url)
        logger.warning("[Encoder] 未配置 OPENAI_API_KEY，查询向量回退为哈希编码，语义召回结果不可用于生产")
    elif provider != "local":
        logger.warning(f"[Encoder] 未知的 EMBEDDING_PROVIDER={provider!r}，使用哈希编码")
    return HashingEncoder(dim)
