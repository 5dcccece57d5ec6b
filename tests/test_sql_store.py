from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recsys.cache.tier import NullCacheTier
from recsys.core.database import Base
from recsys.core.exceptions import StoreUnavailableError
from recsys.data import sql_models
from recsys.data.models import (
    CONTROL_VARIANT_ID,
    AlgorithmWeights,
    EngagementTimeRecord,
    FeedbackRecord,
    FeedbackType,
)
from recsys.data.sql_store import SqlEngagementStore, SqlExperimentStore, SqlFeedbackStore
from recsys.experiments.manager import ExperimentManager

WEIGHTS = AlgorithmWeights(content=0.3, social=0.2, engagement=0.2, recency=0.2, quality=0.1)


class SqlStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.experiments = SqlExperimentStore(self.session_factory)

    def tearDown(self) -> None:
        Base.metadata.drop_all(bind=self.engine)
        self.engine.dispose()

    def test_create_assignment_is_idempotent(self) -> None:
        async def _run():
            v = await self.experiments.create_variant("a", WEIGHTS, 100)
            first = await self.experiments.create_assignment_if_absent("u_1", v.id)
            second = await self.experiments.create_assignment_if_absent("u_1", v.id)
            return v, first, second, await self.experiments.load_variant(v.id)

        v, (a1, created1), (a2, created2), stored = asyncio.run(_run())
        self.assertTrue(created1)
        self.assertFalse(created2)
        self.assertEqual(a1.variant_id, a2.variant_id)
        self.assertEqual(stored.total_assignments, 1)
        self.assertEqual(stored.weights, WEIGHTS)

    def test_active_assignment_wins_until_deactivated(self) -> None:
        async def _run():
            a = await self.experiments.create_variant("a", WEIGHTS, 50)
            b = await self.experiments.create_variant("b", WEIGHTS, 50)
            await self.experiments.create_assignment_if_absent("u_1", a.id)
            kept, created = await self.experiments.create_assignment_if_absent("u_1", b.id)
            await self.experiments.deactivate_variant(a.id)
            moved, moved_created = await self.experiments.create_assignment_if_absent("u_1", b.id)
            latest = await self.experiments.load_assignment("u_1")
            active = await self.experiments.load_active_variants()
            return a, b, kept, created, moved, moved_created, latest, active

        a, b, kept, created, moved, moved_created, latest, active = asyncio.run(_run())
        self.assertEqual((kept.variant_id, created), (a.id, False))
        self.assertEqual((moved.variant_id, moved_created), (b.id, True))
        self.assertEqual(latest.variant_id, b.id)
        self.assertEqual([v.id for v in active], [b.id])

    def test_feedback_counters_and_totals(self) -> None:
        async def _run():
            v = await self.experiments.create_variant("a", WEIGHTS, 100)
            await self.experiments.create_assignment_if_absent("u_1", v.id)
            await self.experiments.create_assignment_if_absent("u_2", v.id)
            ok1 = await self.experiments.record_feedback("u_1", v.id, positive=True, clicked=True)
            ok2 = await self.experiments.record_feedback("u_2", v.id, positive=False, clicked=False)
            missing = await self.experiments.record_feedback("u_3", v.id, positive=True, clicked=True)
            totals = await self.experiments.assignment_totals(v.id)
            users = await self.experiments.assigned_user_ids(v.id)
            return v, ok1, ok2, missing, totals, users, await self.experiments.load_variant(v.id)

        v, ok1, ok2, missing, totals, users, stored = asyncio.run(_run())
        self.assertTrue(ok1 and ok2)
        self.assertFalse(missing)
        self.assertEqual(totals, (2, 2, 1))
        self.assertEqual(sorted(users), ["u_1", "u_2"])
        self.assertEqual((stored.total_positive_feedback, stored.total_negative_feedback), (1, 1))

    def test_malformed_config_loads_without_weights(self) -> None:
        with self.session_factory() as db:
            db.add(
                sql_models.ABTestVariantRow(
                    id="broken", name="broken", config={"contentWeight": "lots"}, traffic_percent=100
                )
            )
            db.commit()

        async def _run():
            manager = ExperimentManager(self.experiments, NullCacheTier())
            return await self.experiments.load_variant("broken"), await manager.get_variant("u_1")

        variant, assignment = asyncio.run(_run())
        self.assertIsNone(variant.weights)
        self.assertEqual(assignment.variant_id, CONTROL_VARIANT_ID)

    def test_engagement_window_query(self) -> None:
        store = SqlEngagementStore(self.session_factory)
        base = datetime(2026, 10, 18, 9, 0, 0)

        async def _run():
            await store.record_engagement_time(
                EngagementTimeRecord("u_1", 9, 0, "paper", ["NLP"], 8.0, "q1", base)
            )
            await store.record_engagement_time(
                EngagementTimeRecord("u_1", 9, 0, "post", ["CV"], 6.0, "p1", base + timedelta(minutes=5))
            )
            await store.record_engagement_time(EngagementTimeRecord("u_1", 15, 0, "post", [], 5.0))
            await store.record_engagement_time(EngagementTimeRecord("u_1", 9, 1, "post", [], 5.0))
            return await store.recent_engagements("u_1", 7, 11, 0)

        records = asyncio.run(_run())
        self.assertEqual([r.content_id for r in records], ["p1", "q1"])
        self.assertEqual(records[1].tags, ["NLP"])

    def test_feedback_history(self) -> None:
        store = SqlFeedbackStore(self.session_factory)
        base = datetime(2026, 10, 18, 9, 0, 0)

        async def _run():
            await store.save_feedback(FeedbackRecord("u_1", "post", "p1", FeedbackType.POSITIVE, created_at=base))
            await store.save_feedback(
                FeedbackRecord(
                    "u_1", "paper", "q1", FeedbackType.NOT_INTERESTED, position=3, created_at=base + timedelta(1)
                )
            )
            return await store.list_feedback("u_1"), await store.list_feedback("u_1", item_type="post")

        all_records, posts = asyncio.run(_run())
        self.assertEqual([r.item_id for r in all_records], ["q1", "p1"])
        self.assertEqual(all_records[0].feedback, FeedbackType.NOT_INTERESTED)
        self.assertEqual([r.item_id for r in posts], ["p1"])

    def test_database_errors_become_store_unavailable(self) -> None:
        Base.metadata.drop_all(bind=self.engine)
        with self.assertRaises(StoreUnavailableError):
            asyncio.run(self.experiments.load_active_variants())


if __name__ == "__main__":
    unittest.main()
