from __future__ import annotations

import re
from typing import Iterable, List

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "can", "this", "that", "these", "those",
    }
)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """小写后的集合 Jaccard 相似度；任一侧为空返回 0"""
    set_a = {x.lower() for x in a}
    set_b = {x.lower() for x in b}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def extract_keywords(text: str) -> List[str]:
    """
    英文关键词抽取：小写 -> 非 [a-z0-9] 替换为空格 -> 按空白切分，
    保留长度 > 3 且不在停用词表中的词（保持原文顺序，可重复）
    """
    if not text:
        return []
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return [w for w in cleaned.split() if len(w) > 3 and w not in STOP_WORDS]
