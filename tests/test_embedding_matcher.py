from __future__ import annotations

import asyncio
import unittest
from types import SimpleNamespace
from typing import List

from recsys.cache.tier import RedisCacheTier
from recsys.data.models import ItemType
from recsys.infra.vector_index import (
    DisabledVectorIndex,
    InMemoryVectorIndex,
    MilvusVectorIndex,
    build_filter_expr,
    cosine_similarity,
)
from recsys.recommender.embedding_matcher import EmbeddingMatcher, semantic_reason
from recsys.recommender.encoder import Encoder, HashingEncoder, OpenAIEncoder, build_encoder

from tests.factories import make_profile
from tests.fake_redis import FakeRedis, FakeRedisClient


class _FixedEncoder(Encoder):
    def __init__(self) -> None:
        self.calls = 0

    @property
    def dim(self) -> int:
        return 2

    async def encode(self, text: str) -> List[float]:
        self.calls += 1
        return [1.0, 0.0]


class _FailingIndex(InMemoryVectorIndex):
    async def similar_content(self, *args, **kwargs):
        raise RuntimeError("milvus down")


class _FakeEmbeddings:
    def __init__(self, vector: List[float]) -> None:
        self.vector = vector
        self.calls: List[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(self.vector))])


class _FakeCollection:
    def __init__(self, hits) -> None:
        self.hits = hits
        self.kwargs: dict = {}

    def search(self, **kwargs):
        self.kwargs = kwargs
        return [self.hits]


def _hit(content_id: str, distance: float):
    return SimpleNamespace(distance=distance, entity={"content_id": content_id})


class HashingEncoderTestCase(unittest.TestCase):
    def test_deterministic_with_fixed_dim(self) -> None:
        encoder = HashingEncoder(dim=16)
        v1 = asyncio.run(encoder.encode("AI. Vision"))
        self.assertEqual(len(v1), 16)
        self.assertEqual(v1, asyncio.run(encoder.encode("AI. Vision")))
        self.assertNotEqual(v1, asyncio.run(encoder.encode("Biology")))
        self.assertTrue(all(-0.5 <= x <= 0.5 for x in v1))

    def test_cosine_similarity(self) -> None:
        self.assertAlmostEqual(cosine_similarity([1, 0], [0.8, 0.6]), 0.8)
        self.assertEqual(cosine_similarity([0, 0], [1, 0]), 0.0)
        with self.assertRaises(ValueError):
            cosine_similarity([1], [1, 0])


class OpenAIEncoderTestCase(unittest.TestCase):
    def test_encode_requests_configured_model_and_dimensions(self) -> None:
        embeddings = _FakeEmbeddings([0.1, 0.2, 0.3])
        encoder = OpenAIEncoder(
            "", "text-embedding-3-small", 3, client=SimpleNamespace(embeddings=embeddings)
        )
        vector = asyncio.run(encoder.encode("AI. Vision"))
        self.assertEqual(vector, [0.1, 0.2, 0.3])
        self.assertEqual(
            embeddings.calls,
            [{"input": "AI. Vision", "model": "text-embedding-3-small", "dimensions": 3}],
        )

    def test_dimension_mismatch_raises(self) -> None:
        encoder = OpenAIEncoder(
            "", "text-embedding-ada-002", 4, client=SimpleNamespace(embeddings=_FakeEmbeddings([0.1, 0.2]))
        )
        with self.assertRaises(ValueError):
            asyncio.run(encoder.encode("AI"))

    def test_build_encoder_provider_selection(self) -> None:
        self.assertIsInstance(build_encoder("openai", dim=8, api_key="sk-test"), OpenAIEncoder)
        fallback = build_encoder("openai", dim=8, api_key="")
        self.assertIsInstance(fallback, HashingEncoder)
        self.assertEqual(fallback.dim, 8)
        self.assertIsInstance(build_encoder("local", dim=8), HashingEncoder)


class MilvusFilterTestCase(unittest.TestCase):
    def test_plain_filter(self) -> None:
        self.assertEqual(build_filter_expr(ItemType.POST), 'content_type == "post"')
        self.assertEqual(
            build_filter_expr(ItemType.PAPER, ["q1", "q2"]),
            'content_type == "paper" and content_id not in ["q1", "q2"]',
        )

    def test_quotes_and_backslashes_are_escaped(self) -> None:
        expr = build_filter_expr(ItemType.PAPER, ['a"b', "c\\d"])
        self.assertEqual(expr, 'content_type == "paper" and content_id not in ["a\\"b", "c\\\\d"]')

    def test_injected_id_stays_inside_literal(self) -> None:
        expr = build_filter_expr(ItemType.PAPER, ['x"] or content_type == "post'])
        self.assertEqual(
            expr, 'content_type == "paper" and content_id not in ["x\\"] or content_type == \\"post"]'
        )

    def test_search_uses_escaped_expression(self) -> None:
        index = MilvusVectorIndex("content_embeddings")
        index.collection = _FakeCollection([_hit("q1", 0.9), _hit("q2", 0.4), _hit("q3", 0.95)])
        hits = asyncio.run(index.similar_content([1.0, 0.0], ItemType.PAPER, 5, ['a"b'], min_similarity=0.5))
        self.assertEqual(hits, [("q3", 0.95), ("q1", 0.9)])
        self.assertEqual(
            index.collection.kwargs["expr"], 'content_type == "paper" and content_id not in ["a\\"b"]'
        )
        self.assertEqual(index.collection.kwargs["limit"], 5)


class EmbeddingMatcherTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.index = InMemoryVectorIndex()
        self.index.upsert(ItemType.PAPER, "q_same", [1.0, 0.0])
        self.index.upsert(ItemType.PAPER, "q_close", [0.8, 0.6])
        self.index.upsert(ItemType.PAPER, "q_far", [0.0, 1.0])
        self.index.upsert(ItemType.POST, "p_same", [1.0, 0.0])
        self.encoder = _FixedEncoder()
        self.matcher = EmbeddingMatcher(self.index, self.encoder, min_similarity=0.6)
        self.profile = make_profile(interests={"AI"})

    def test_similarity_above_threshold_ranked(self) -> None:
        recs = asyncio.run(self.matcher.match(self.profile, ItemType.PAPER, 5))
        self.assertEqual([r.item_id for r in recs], ["q_same", "q_close"])
        self.assertAlmostEqual(recs[0].score, 100.0)
        self.assertAlmostEqual(recs[1].score, 80.0)
        self.assertEqual(recs[1].reasons, ["80% semantic match with your interests"])
        self.assertTrue(all(r.item_type == ItemType.PAPER for r in recs))

    def test_exclusions_and_limit(self) -> None:
        recs = asyncio.run(self.matcher.match(self.profile, ItemType.PAPER, 1, ["q_same"]))
        self.assertEqual([r.item_id for r in recs], ["q_close"])

    def test_query_vector_cached_by_interest_text(self) -> None:
        redis = FakeRedis()
        cache = RedisCacheTier(FakeRedisClient(redis))  # type: ignore[arg-type]
        matcher = EmbeddingMatcher(self.index, self.encoder, cache=cache, query_ttl_seconds=600)

        asyncio.run(matcher.match(self.profile, ItemType.PAPER, 5))
        asyncio.run(matcher.match(self.profile, ItemType.POST, 5))
        self.assertEqual(self.encoder.calls, 1)

        # 另一个实例共用同一个缓存层
        other = EmbeddingMatcher(self.index, self.encoder, cache=cache)
        asyncio.run(other.match(make_profile("u_2", interests={"AI"}), ItemType.PAPER, 5))
        self.assertEqual(self.encoder.calls, 1)

        asyncio.run(matcher.match(make_profile(interests={"AI", "NLP"}), ItemType.POST, 5))
        self.assertEqual(self.encoder.calls, 2)

        keys = [k for k in redis.keys_snapshot() if k.startswith(cache.keys.query_vector_prefix)]
        self.assertEqual(len(keys), 2)
        self.assertTrue(all(redis.ttls[k] == 600 for k in keys))

    def test_query_vectors_grow_with_interests_not_users(self) -> None:
        redis = FakeRedis()
        cache = RedisCacheTier(FakeRedisClient(redis))  # type: ignore[arg-type]
        matcher = EmbeddingMatcher(self.index, self.encoder, cache=cache)

        async def _run():
            for i in range(300):
                await matcher.match(make_profile(f"u_{i}", interests={"AI"}), ItemType.PAPER, 2)

        asyncio.run(_run())
        self.assertEqual(self.encoder.calls, 1)
        self.assertEqual(len(redis.keys_snapshot()), 1)
        self.assertTrue(redis.keys_snapshot()[0].startswith(cache.keys.query_vector_prefix))

    def test_encoder_failure_is_empty(self) -> None:
        class _BrokenEncoder(_FixedEncoder):
            async def encode(self, text: str) -> List[float]:
                raise RuntimeError("embedding api down")

        matcher = EmbeddingMatcher(self.index, _BrokenEncoder())
        self.assertEqual(asyncio.run(matcher.match(self.profile, ItemType.PAPER, 5)), [])

    def test_empty_when_disabled_or_no_interests(self) -> None:
        disabled = EmbeddingMatcher(DisabledVectorIndex(), self.encoder)
        self.assertEqual(asyncio.run(disabled.match(self.profile, ItemType.PAPER, 5)), [])
        self.assertEqual(asyncio.run(self.matcher.match(make_profile(interests=()), ItemType.PAPER, 5)), [])

    def test_index_failure_is_empty(self) -> None:
        matcher = EmbeddingMatcher(_FailingIndex(), self.encoder)
        self.assertEqual(asyncio.run(matcher.match(self.profile, ItemType.PAPER, 5)), [])

    def test_semantic_reason_rounds(self) -> None:
        self.assertEqual(semantic_reason(0.876), "88% semantic match with your interests")


if __name__ == "__main__":
    unittest.main()
