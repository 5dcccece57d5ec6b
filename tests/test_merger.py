from __future__ import annotations

import unittest

from recsys.data.models import ItemType, RecommendationScore
from recsys.recommender.merger import merge_recommendations


def _rec(item_id: str, score: float, *reasons: str) -> RecommendationScore:
    return RecommendationScore(item_id=item_id, item_type=ItemType.POST, score=score, reasons=list(reasons))


class MergeRecommendationsTestCase(unittest.TestCase):
    def test_overlap_is_averaged_and_reasons_unioned(self) -> None:
        first = [_rec("x", 10, "A"), _rec("y", 8, "B")]
        second = [_rec("x", 30, "C", "A"), _rec("z", 40, "D")]

        merged = merge_recommendations([first, second], [1.0, 0.5], limit=10)

        self.assertEqual([r.item_id for r in merged], ["z", "x", "y"])
        by_id = {r.item_id: r for r in merged}
        self.assertAlmostEqual(by_id["x"].score, 12.5)
        self.assertAlmostEqual(by_id["z"].score, 20.0)
        self.assertEqual(by_id["x"].reasons, ["A", "C"])

    def test_three_sources_weighted(self) -> None:
        base = [_rec("x", 10, "A")]
        semantic = [_rec("x", 20, "S"), _rec("y", 30, "S")]
        discover = [_rec("x", 30, "D"), _rec("z", 8, "D")]

        merged = merge_recommendations([base, semantic, discover], [1.0, 0.5, 1.0], limit=10)

        self.assertEqual([r.item_id for r in merged], ["x", "y", "z"])
        self.assertAlmostEqual(merged[0].score, 20.0)
        self.assertEqual(merged[0].reasons, ["A", "S", "D"])

    def test_inputs_not_mutated(self) -> None:
        first = [_rec("x", 10, "A")]
        merge_recommendations([first, [_rec("x", 20, "B")]], [1.0, 1.0], limit=5)
        self.assertEqual(first[0].score, 10)
        self.assertEqual(first[0].reasons, ["A"])

    def test_missing_weight_defaults_to_one(self) -> None:
        merged = merge_recommendations([[_rec("x", 10)], [_rec("y", 7)]], [0.5], limit=5)
        self.assertEqual({r.item_id: r.score for r in merged}, {"x": 5.0, "y": 7.0})

    def test_ties_keep_first_seen_order(self) -> None:
        merged = merge_recommendations([[_rec("a", 5), _rec("b", 5)], [_rec("c", 5)]], None, limit=3)
        self.assertEqual([r.item_id for r in merged], ["a", "b", "c"])

    def test_limit_truncates(self) -> None:
        merged = merge_recommendations([[_rec(str(i), i) for i in range(10)]], [1.0], limit=3)
        self.assertEqual([r.item_id for r in merged], ["9", "8", "7"])
        self.assertEqual(merge_recommendations([[_rec("a", 1)]], [1.0], limit=0), [])


if __name__ == "__main__":
    unittest.main()
