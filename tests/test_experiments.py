from __future__ import annotations

import asyncio
import unittest
from collections import Counter

from recsys.cache.tier import NullCacheTier, RedisCacheTier
from recsys.core.exceptions import StoreUnavailableError
from recsys.data.memory_store import InMemoryExperimentStore
from recsys.data.models import (
    CONTROL_VARIANT_ID,
    CONTROL_WEIGHTS,
    ABVariant,
    AlgorithmWeights,
    FeedbackType,
)
from recsys.experiments.bucketing import bucket, pick_variant
from recsys.experiments.manager import ExperimentManager
from recsys.experiments.variants import EXAMPLE_VARIANTS, VariantConfig, performance_score

from tests.fake_redis import FakeRedis, FakeRedisClient

WEIGHTS_A = AlgorithmWeights(content=0.5, social=0.1, engagement=0.1, recency=0.2, quality=0.1)
WEIGHTS_B = AlgorithmWeights(content=0.1, social=0.5, engagement=0.1, recency=0.2, quality=0.1)


def _config(name: str, traffic: float, weights: AlgorithmWeights = WEIGHTS_A) -> VariantConfig:
    return VariantConfig(name=name, description="", weights=weights, traffic_percent=traffic)


class _UnavailableExperimentStore(InMemoryExperimentStore):
    async def load_assignment(self, user_id: str):
        raise StoreUnavailableError("experiment store")


class BucketingTestCase(unittest.TestCase):
    def test_bucket_is_deterministic_and_in_range(self) -> None:
        values = [bucket("exp", f"user_{i}") for i in range(500)]
        self.assertEqual(values, [bucket("exp", f"user_{i}") for i in range(500)])
        self.assertTrue(all(0 <= v < 100 for v in values))

    def test_bucket_depends_on_experiment_key(self) -> None:
        diffs = sum(bucket("exp_a", f"u{i}") != bucket("exp_b", f"u{i}") for i in range(100))
        self.assertGreater(diffs, 90)

    def test_pick_variant_cumulative_and_skips_zero_traffic(self) -> None:
        zero = ABVariant(id="z", name="z", weights=WEIGHTS_A, traffic_percent=0)
        a = ABVariant(id="a", name="a", weights=WEIGHTS_A, traffic_percent=30)
        b = ABVariant(id="b", name="b", weights=WEIGHTS_B, traffic_percent=20)
        self.assertIs(pick_variant([zero, a, b], 0.0), a)
        self.assertIs(pick_variant([zero, a, b], 30.0), a)
        self.assertIs(pick_variant([zero, a, b], 30.01), b)
        self.assertIsNone(pick_variant([zero, a, b], 50.5))


class ExperimentManagerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryExperimentStore()
        self.redis = FakeRedis()
        self.cache = RedisCacheTier(FakeRedisClient(self.redis))  # type: ignore[arg-type]
        self.manager = ExperimentManager(self.store, self.cache, experiment_key="exp")

    def test_control_when_no_variants(self) -> None:
        result = asyncio.run(self.manager.get_variant("u_1"))
        self.assertEqual(result.variant_id, CONTROL_VARIANT_ID)
        self.assertEqual(result.weights, CONTROL_WEIGHTS)
        # 对照组不写缓存
        self.assertEqual(self.redis.keys_snapshot(), [])

    def test_assignment_is_sticky_and_counted_once(self) -> None:
        async def _run():
            v = await self.manager.create_variant(_config("a", 100))
            first = await self.manager.get_variant("u_1")
            await self.redis.flushdb()
            second = await self.manager.get_variant("u_1")
            return v, first, second

        v, first, second = asyncio.run(_run())
        self.assertEqual(first.variant_id, v.id)
        self.assertEqual(second, first)
        self.assertEqual(len(self.store.assignments), 1)
        self.assertEqual(self.store.variants[v.id].total_assignments, 1)

    def test_concurrent_first_requests_create_single_assignment(self) -> None:
        async def _run():
            await self.manager.create_variant(_config("a", 100))
            return await asyncio.gather(*[self.manager.get_variant("u_1") for _ in range(10)])

        results = asyncio.run(_run())
        self.assertEqual(len({r.variant_id for r in results}), 1)
        self.assertEqual(len(self.store.assignments), 1)

    def test_traffic_split_roughly_even(self) -> None:
        manager = ExperimentManager(self.store, NullCacheTier(), experiment_key="exp")

        async def _run():
            for c in EXAMPLE_VARIANTS:
                await manager.create_variant(c)
            return [(await manager.get_variant(f"user_{i}")).variant_id for i in range(4000)]

        counts = Counter(asyncio.run(_run()))
        self.assertEqual(len(counts), 4)
        for variant_id, n in counts.items():
            self.assertAlmostEqual(n / 4000, 0.25, delta=0.03, msg=variant_id)

    def test_users_beyond_total_traffic_get_control(self) -> None:
        async def _run():
            await self.manager.create_variant(_config("tiny", 0.0))
            return await self.manager.get_variant("u_1")

        self.assertEqual(asyncio.run(_run()).variant_id, CONTROL_VARIANT_ID)
        self.assertEqual(self.store.assignments, [])

    def test_deactivation_clears_cache_and_reassigns(self) -> None:
        async def _run():
            a = await self.manager.create_variant(_config("a", 100))
            first = await self.manager.get_variant("u_1")
            ok = await self.manager.deactivate_variant(a.id)
            cached_after = await self.redis.get(self.cache.keys.abtest("u_1"))
            b = await self.manager.create_variant(_config("b", 100, WEIGHTS_B))
            second = await self.manager.get_variant("u_1")
            return a, b, first, ok, cached_after, second

        a, b, first, ok, cached_after, second = asyncio.run(_run())
        self.assertEqual(first.variant_id, a.id)
        self.assertTrue(ok)
        self.assertIsNone(cached_after)
        self.assertEqual(second.variant_id, b.id)
        self.assertEqual(second.weights, WEIGHTS_B)

    def test_deactivate_unknown_variant(self) -> None:
        self.assertFalse(asyncio.run(self.manager.deactivate_variant("missing")))

    def test_malformed_weights_fall_back_to_control(self) -> None:
        self.store.variants["broken"] = ABVariant(id="broken", name="broken", weights=None, traffic_percent=100)
        result = asyncio.run(self.manager.get_variant("u_1"))
        self.assertEqual(result.variant_id, CONTROL_VARIANT_ID)
        self.assertEqual(self.store.assignments, [])

    def test_malformed_cache_entry_is_recomputed(self) -> None:
        async def _run():
            v = await self.manager.create_variant(_config("a", 100))
            await self.redis.set(self.cache.keys.abtest("u_1"), '{"variantId": "x", "weights": {"contentWeight": -1}}')
            return v, await self.manager.get_variant("u_1")

        v, result = asyncio.run(_run())
        self.assertEqual(result.variant_id, v.id)

    def test_store_failure_falls_back_to_control(self) -> None:
        manager = ExperimentManager(_UnavailableExperimentStore(), self.cache)
        result = asyncio.run(manager.get_variant("u_1"))
        self.assertEqual(result.variant_id, CONTROL_VARIANT_ID)

    def test_feedback_and_click_through_rate(self) -> None:
        async def _run():
            v = await self.manager.create_variant(_config("a", 100))
            await self.manager.get_variant("u_1")
            ok = await self.manager.record_feedback("u_1", v.id, FeedbackType.POSITIVE, clicked=True)
            ctr1 = await self.manager.update_metrics(v.id)
            await self.manager.record_feedback("u_1", v.id, "negative")
            ctr2 = await self.manager.update_metrics(v.id)
            results = await self.manager.get_results(v.id)
            return ok, ctr1, ctr2, results[0]

        ok, ctr1, ctr2, report = asyncio.run(_run())
        self.assertTrue(ok)
        self.assertAlmostEqual(ctr1, 100.0)
        self.assertAlmostEqual(ctr2, 50.0)
        self.assertEqual(report["totalPositiveFeedback"], 1)
        self.assertEqual(report["totalNegativeFeedback"], 1)
        self.assertAlmostEqual(report["avgPositiveFeedbackPerUser"], 1.0)
        self.assertAlmostEqual(report["performanceScore"], 50 * 0.6 + 50 * 0.4)

    def test_feedback_without_assignment_or_for_control(self) -> None:
        async def _run():
            v = await self.manager.create_variant(_config("a", 100))
            missing = await self.manager.record_feedback("nobody", v.id, "positive")
            control = await self.manager.record_feedback("u_1", CONTROL_VARIANT_ID, "positive")
            metrics = await self.manager.update_metrics(v.id)
            return missing, control, metrics

        self.assertEqual(asyncio.run(_run()), (False, False, None))

    def test_performance_score_neutral_without_feedback(self) -> None:
        v = ABVariant(id="a", name="a", weights=WEIGHTS_A, traffic_percent=10, avg_click_through_rate=10)
        self.assertAlmostEqual(performance_score(v), 50 * 0.6 + 10 * 0.4)

    def test_create_variant_rejects_bad_traffic(self) -> None:
        with self.assertRaises(ValueError):
            asyncio.run(self.manager.create_variant(_config("bad", 150)))

    def test_seed_is_idempotent(self) -> None:
        async def _run():
            first = await self.manager.seed_example_variants()
            second = await self.manager.seed_example_variants()
            return first, second

        first, second = asyncio.run(_run())
        self.assertEqual([v.name for v in first], ["social_priority", "quality_focus", "ml_embeddings"])
        self.assertEqual(second, [])

    def test_results_unknown_variant(self) -> None:
        with self.assertRaises(ValueError):
            asyncio.run(self.manager.get_results("missing"))


if __name__ == "__main__":
    unittest.main()
