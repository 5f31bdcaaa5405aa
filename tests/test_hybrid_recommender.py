import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest

from hybrid_recommender import HybridRecommender, combine_recommendations
from models import Algorithm, RecommendationScore


def _rec(product_id, score, algorithm):
    return RecommendationScore(product_id=product_id, score=score, algorithm=algorithm, confidence=0.5)


def test_combines_with_fixed_weights():
    recs = combine_recommendations(
        [_rec("p1", 3.0, Algorithm.COLLABORATIVE)],
        [_rec("p1", 2.0, Algorithm.CONTENT)],
        limit=10,
    )
    assert len(recs) == 1
    rec = recs[0]
    assert rec.score == pytest.approx(0.6 * 3.0 + 0.4 * 2.0)
    assert rec.algorithm == Algorithm.HYBRID
    assert rec.confidence == 1.0
    assert rec.reasoning == ["Recommended by multiple algorithms", "Collaborative: 3.00, Content: 2.00"]


def test_missing_side_counts_as_zero():
    recs = combine_recommendations(
        [_rec("p1", 4.0, Algorithm.COLLABORATIVE)],
        [_rec("p2", 5.0, Algorithm.CONTENT)],
        limit=10,
    )
    by_product = {r.product_id: r for r in recs}
    assert by_product["p1"].score == pytest.approx(2.4)
    assert by_product["p2"].score == pytest.approx(2.0)
    assert by_product["p1"].confidence == 0.5
    assert by_product["p1"].reasoning[0] == "Hybrid recommendation"
    assert [r.product_id for r in recs] == ["p1", "p2"]


def test_negative_collaborative_score_is_kept():
    recs = combine_recommendations(
        [_rec("p1", -2.0, Algorithm.COLLABORATIVE)],
        [_rec("p1", 1.0, Algorithm.CONTENT)],
        limit=10,
    )
    assert recs[0].score == pytest.approx(0.6 * -2.0 + 0.4 * 1.0)


def test_duplicate_entries_use_the_max():
    recs = combine_recommendations(
        [_rec("p1", 1.0, Algorithm.COLLABORATIVE), _rec("p1", 2.0, Algorithm.COLLABORATIVE)],
        [],
        limit=10,
    )
    assert recs[0].score == pytest.approx(1.2)
    assert recs[0].confidence == 1.0


def test_limit_applies_after_sorting():
    collab = [_rec(f"p{i}", float(i), Algorithm.COLLABORATIVE) for i in range(5)]
    recs = combine_recommendations(collab, [], limit=2)
    assert [r.product_id for r in recs] == ["p4", "p3"]


class _StubEngine:
    def __init__(self, recs):
        self.recs = recs
        self.requested = None

    def get_user_recommendations(self, user_id, limit):
        self.requested = limit
        return self.recs


def test_requests_twice_the_limit_from_each_engine():
    collab = _StubEngine([_rec("p1", 1.0, Algorithm.COLLABORATIVE)])
    content = _StubEngine([_rec("p2", 1.0, Algorithm.CONTENT)])
    recs = HybridRecommender(collab, content).get_recommendations("u", limit=3)
    assert collab.requested == 6
    assert content.requested == 6
    assert [r.product_id for r in recs] == ["p1", "p2"]
