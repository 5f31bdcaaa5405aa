import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import datetime as dt

import pytest

from collaborative_filtering import CollaborativeFiltering, pearson_similarity
from models import Algorithm, EventType, Preference
from preference_model import PreferenceModel

T0 = dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)


def _model(ratings):
    """ratings: {user_id: {product_id: rating}}"""
    return PreferenceModel([
        Preference(user_id=u, product_id=p, rating=r, interaction_type=EventType.PRODUCT_VIEW,
                   timestamp=T0, weight=1.0)
        for u, products in ratings.items()
        for p, r in products.items()
    ])


def test_similarity_of_identical_profiles_is_one():
    a = {"p1": 1.0, "p2": 3.0, "p3": 5.0}
    assert pearson_similarity(a, dict(a)) == pytest.approx(1.0)


def test_similarity_is_symmetric_and_bounded():
    a = {"p1": 1.0, "p2": 2.0, "p3": 4.6, "p4": 5.0}
    b = {"p1": 4.0, "p2": 1.0, "p3": 3.3, "p5": 2.0}
    s_ab = pearson_similarity(a, b)
    assert s_ab == pearson_similarity(b, a)
    assert -1.0 <= s_ab <= 1.0


def test_opposite_profiles_are_negatively_correlated():
    assert pearson_similarity({"p1": 1.0, "p2": 5.0}, {"p1": 5.0, "p2": 1.0}) == pytest.approx(-1.0)


def test_no_overlap_or_zero_variance_gives_zero():
    assert pearson_similarity({"p1": 3.0}, {"p2": 3.0}) == 0.0
    assert pearson_similarity({"p1": 3.0, "p2": 3.0}, {"p1": 1.0, "p2": 5.0}) == 0.0
    assert pearson_similarity({"p1": 2.0}, {"p1": 4.0}) == 0.0


def test_constant_fractional_ratings_have_exactly_zero_similarity():
    flat = {f"p{i}": 2.7 for i in range(7)}
    varied = {f"p{i}": float(r) for i, r in enumerate([1, 2, 3, 4, 5, 1, 2])}
    assert pearson_similarity(flat, varied) == 0.0
    assert pearson_similarity(varied, flat) == 0.0


def test_recommends_unrated_products_of_similar_users():
    model = _model({
        "alice": {"p1": 5.0, "p2": 1.0},
        "bob": {"p1": 5.0, "p2": 1.0, "p3": 4.0},
        "carol": {"p1": 1.0, "p2": 5.0, "p4": 5.0},
    })
    recs = CollaborativeFiltering(model).get_user_recommendations("alice")

    by_product = {r.product_id: r for r in recs}
    assert by_product["p3"].score == pytest.approx(4.0)
    assert by_product["p4"].score == pytest.approx(-5.0)
    assert [r.product_id for r in recs] == ["p3", "p4"]
    assert by_product["p3"].algorithm == Algorithm.COLLABORATIVE
    assert by_product["p3"].confidence == pytest.approx(1 / 3)
    assert by_product["p3"].reasoning == ["Recommended by 1 similar users"]


def test_scores_average_over_contributing_users():
    model = _model({
        "alice": {"p1": 5.0, "p2": 1.0},
        "bob": {"p1": 5.0, "p2": 1.0, "p3": 4.0},
        "dave": {"p1": 4.0, "p2": 2.0, "p3": 2.0},
    })
    recs = CollaborativeFiltering(model).get_user_recommendations("alice")
    assert len(recs) == 1
    # both similarities are 1.0: (4*1 + 2*1) / 2
    assert recs[0].score == pytest.approx(3.0)
    assert recs[0].confidence == pytest.approx(2 / 3)


def test_only_top_five_similar_users_contribute():
    ratings = {"target": {"p1": 5.0, "p2": 1.0}}
    for i in range(6):
        ratings[f"u{i}"] = {"p1": 5.0, "p2": 1.0, f"x{i}": 3.0}
    cf = CollaborativeFiltering(_model(ratings))

    similar = cf.get_similar_users("target")
    assert [u for u, _ in similar] == ["u0", "u1", "u2", "u3", "u4"]

    recs = cf.get_user_recommendations("target")
    assert sorted(r.product_id for r in recs) == ["x0", "x1", "x2", "x3", "x4"]


def test_user_without_ratings_gets_nothing():
    model = _model({"bob": {"p1": 5.0}})
    assert CollaborativeFiltering(model).get_user_recommendations("alice") == []


def test_limit_is_respected():
    model = _model({
        "alice": {"p1": 5.0, "p2": 1.0},
        "bob": {"p1": 5.0, "p2": 1.0, "p3": 4.0, "p4": 3.0, "p5": 2.0},
    })
    recs = CollaborativeFiltering(model).get_user_recommendations("alice", limit=2)
    assert [r.product_id for r in recs] == ["p3", "p4"]
