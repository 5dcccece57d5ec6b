import hashlib
from typing import Optional, Sequence

from recsys.data.models import ABVariant

BUCKET_SCALE = 10000


def h64(s: str) -> int:
    d = hashlib.sha256(s.encode("utf-8")).digest()
    h = 0
    for i in range(8):
        h = (h << 8) | d[i]
    return h & ((1 << 63) - 1)


def bucket(experiment_key: str, user_id: str) -> float:
    """(experiment_key, user_id) -> [0, 100)，同一输入永远得到同一值，精度 0.01"""
    return (h64(f"{experiment_key}:{user_id}") % BUCKET_SCALE) / (BUCKET_SCALE / 100)


def pick_variant(variants: Sequence[ABVariant], draw: float) -> Optional[ABVariant]:
    """按创建顺序累加 traffic_percent，返回第一个累计值 >= draw 的分组；超出总流量返回 None"""
    cumulative = 0.0
    for v in variants:
        pct = float(v.traffic_percent)
        if pct <= 0:
            continue
        cumulative += pct
        if draw <= cumulative:
            return v
    return None
