"""
向量索引实现

- MilvusVectorIndex：pymilvus Collection.search（COSINE），同步调用放到线程里
- InMemoryVectorIndex：暴力余弦检索，用于演示与单测
- DisabledVectorIndex：未启用向量召回时的占位实现
"""

from __future__ import annotations

import asyncio
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger
from pymilvus import Collection, connections

from recsys.core.config import settings
from recsys.data.interfaces import VectorIndex
from recsys.data.models import ItemType


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    if len(vec1) != len(vec2):
        raise ValueError("向量维度不一致")
    dot = norm1 = norm2 = 0.0
    for a, b in zip(vec1, vec2):
        dot += a * b
        norm1 += a * a
        norm2 += b * b
    magnitude = math.sqrt(norm1) * math.sqrt(norm2)
    if magnitude == 0:
        return 0.0
    return dot / magnitude


def _quote(value: str) -> str:
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_filter_expr(item_type: ItemType, exclude_ids: Sequence[str] = ()) -> str:
    """Milvus 过滤表达式；id 来自请求参数，字符串字面量需转义引号与反斜杠"""
    expr = f"content_type == {_quote(item_type.value)}"
    if exclude_ids:
        quoted = ", ".join(_quote(i) for i in exclude_ids)
        expr = f"{expr} and content_id not in [{quoted}]"
    return expr


class DisabledVectorIndex(VectorIndex):
    @property
    def enabled(self) -> bool:
        return False

    async def similar_content(
        self,
        query_vector: Sequence[float],
        item_type: ItemType,
        k: int,
        exclude_ids: Iterable[str] = (),
        min_similarity: float = 0.5,
    ) -> List[Tuple[str, float]]:
        return []


class InMemoryVectorIndex(VectorIndex):
    def __init__(self) -> None:
        self._vectors: Dict[Tuple[ItemType, str], List[float]] = {}

    @property
    def enabled(self) -> bool:
        return True

    def upsert(self, item_type: ItemType, item_id: str, vector: Sequence[float]) -> None:
        self._vectors[(item_type, item_id)] = list(vector)

    async def similar_content(
        self,
        query_vector: Sequence[float],
        item_type: ItemType,
        k: int,
        exclude_ids: Iterable[str] = (),
        min_similarity: float = 0.5,
    ) -> List[Tuple[str, float]]:
        excluded = set(exclude_ids)
        hits: List[Tuple[str, float]] = []
        for (t, item_id), vec in self._vectors.items():
            if t != item_type or item_id in excluded:
                continue
            sim = cosine_similarity(query_vector, vec)
            if sim >= min_similarity:
                hits.append((item_id, sim))
        hits.sort(key=lambda h: h[1], reverse=True)
        return hits[: max(0, k)]


class MilvusVectorIndex(VectorIndex):
    """
    Milvus 内容向量检索

    集合字段约定：content_id (VARCHAR), content_type (VARCHAR), embedding (FLOAT_VECTOR)，
    索引 metric_type = COSINE，distance 即余弦相似度。
    """

    def __init__(self, collection_name: Optional[str] = None, connect_alias: str = "recsys"):
        self.collection_name = collection_name or settings.MILVUS_COLLECTION
        self.connect_alias = connect_alias
        self.collection = None

    @property
    def enabled(self) -> bool:
        return self.collection is not None

    def connect(self) -> None:
        connect_params = {
            "alias": self.connect_alias,
            "host": settings.MILVUS_HOST,
            "port": str(settings.MILVUS_PORT),
        }
        if settings.MILVUS_USER and settings.MILVUS_PASSWORD:
            connect_params["user"] = settings.MILVUS_USER
            connect_params["password"] = settings.MILVUS_PASSWORD
        if settings.MILVUS_SECURE:
            connect_params["secure"] = True

        try:
            connections.connect(**connect_params)
            self.collection = Collection(self.collection_name, using=self.connect_alias)
            self.collection.load()
            logger.info(
                f"[VectorIndex] 已加载 Milvus 集合 {self.collection_name} "
                f"({settings.MILVUS_HOST}:{settings.MILVUS_PORT})"
            )
        except Exception as e:
            # 向量召回为可选能力，连接失败时降级为禁用
            logger.error(f"[VectorIndex] 连接 Milvus 失败，向量召回已禁用: {e}")
            self.collection = None

    def close(self) -> None:
        try:
            connections.disconnect(self.connect_alias)
            logger.info("Milvus 连接已关闭")
        except Exception as e:
            logger.warning(f"关闭 Milvus 连接时出错: {e}")
        self.collection = None

    async def similar_content(
        self,
        query_vector: Sequence[float],
        item_type: ItemType,
        k: int,
        exclude_ids: Iterable[str] = (),
        min_similarity: float = 0.5,
    ) -> List[Tuple[str, float]]:
        if self.collection is None or k <= 0:
            return []
        return await asyncio.to_thread(
            self._search, list(query_vector), item_type, k, list(exclude_ids), min_similarity
        )

    def _search(
        self,
        query_vector: List[float],
        item_type: ItemType,
        k: int,
        exclude_ids: List[str],
        min_similarity: float,
    ) -> List[Tuple[str, float]]:
        expr = build_filter_expr(item_type, exclude_ids)
        results = self.collection.search(
            data=[query_vector],
            anns_field="embedding",
            param={"metric_type": "COSINE", "params": {"nprobe": 10}},
            limit=k,
            expr=expr,
            output_fields=["content_id"],
        )
        hits: List[Tuple[str, float]] = []
        for hit in results[0]:
            similarity = float(hit.distance)
            if similarity < min_similarity:
                continue
            hits.append((str(hit.entity.get("content_id")), similarity))
        hits.sort(key=lambda h: h[1], reverse=True)
        logger.debug(f"[VectorIndex] type={item_type.value} 命中 {len(hits)} 条")
        return hits
