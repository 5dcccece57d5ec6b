from __future__ import annotations

import asyncio
import unittest

from recsys.cache.tier import NullCacheTier
from recsys.core.exceptions import StoreUnavailableError, UserNotFoundError
from recsys.data.memory_store import InMemoryCandidateSource, InMemoryProfileSource
from recsys.data.models import ItemType
from recsys.recommender.candidates import CandidateRetriever
from recsys.recommender.profile import ProfileBuilder

from tests.factories import make_paper, make_post, make_profile


class _LeakySource(InMemoryCandidateSource):
    """忽略排除条件的数据源"""

    async def fetch_candidates(self, item_type, exclude_ids, limit):
        return await super().fetch_candidates(item_type, (), limit)


class _HangingSource(InMemoryCandidateSource):
    async def fetch_candidates(self, item_type, exclude_ids, limit):
        await asyncio.sleep(1)
        return []


class CandidateRetrieverTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.items = [
            make_post("p_new", age_days=0),
            make_post("p_liked", age_days=1),
            make_post("p_saved", age_days=2),
            make_post("p_mine", age_days=3, authors=("u_1", "u_2")),
            make_post("p_skip", age_days=4),
            make_post("p_old", age_days=5),
            make_paper("q1", age_days=0),
        ]
        self.profile = make_profile(liked={"p_liked"}, bookmarked={"p_saved"})

    def _ids(self, retriever: CandidateRetriever) -> list:
        items = asyncio.run(retriever.retrieve(self.profile, ItemType.POST, ["p_skip"]))
        return [i.id for i in items]

    def test_excludes_liked_bookmarked_requested_and_own(self) -> None:
        retriever = CandidateRetriever(InMemoryCandidateSource(self.items))
        self.assertEqual(self._ids(retriever), ["p_new", "p_old"])

    def test_guard_filters_leaky_source(self) -> None:
        retriever = CandidateRetriever(_LeakySource(self.items))
        self.assertEqual(self._ids(retriever), ["p_new", "p_old"])

    def test_pool_is_bounded(self) -> None:
        retriever = CandidateRetriever(InMemoryCandidateSource(self.items), pool_size=1)
        self.assertEqual(self._ids(retriever), ["p_new"])

    def test_unavailable_source_raises(self) -> None:
        retriever = CandidateRetriever(InMemoryCandidateSource(self.items, available=False))
        with self.assertRaises(StoreUnavailableError):
            asyncio.run(retriever.retrieve(self.profile, ItemType.POST))

    def test_timeout_raises_store_unavailable(self) -> None:
        retriever = CandidateRetriever(_HangingSource(), timeout_seconds=0.05)
        with self.assertRaises(StoreUnavailableError):
            asyncio.run(retriever.retrieve(self.profile, ItemType.POST))


class ProfileBuilderTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.source = InMemoryProfileSource(
            [
                make_profile("u_1", {"AI", "Vision", "NLP"}),
                make_profile("u_2", {"AI", "Vision", "NLP"}),
                make_profile("u_3", {"AI", "Robotics"}),
                make_profile("u_4", {"Biology"}),
                make_profile("u_5", ()),
            ]
        )
        self.builder = ProfileBuilder(self.source, NullCacheTier())

    def test_unknown_user(self) -> None:
        with self.assertRaises(UserNotFoundError):
            asyncio.run(self.builder.build("nobody"))

    def test_similar_users_ranked_by_interest_overlap(self) -> None:
        self.assertEqual(asyncio.run(self.builder.find_similar_users("u_1", 10)), ["u_2", "u_3"])
        self.assertEqual(asyncio.run(self.builder.find_similar_users("u_1", 1)), ["u_2"])

    def test_user_without_interests_has_no_similar_users(self) -> None:
        self.assertEqual(asyncio.run(self.builder.find_similar_users("u_5")), [])


if __name__ == "__main__":
    unittest.main()
