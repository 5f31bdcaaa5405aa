import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import datetime as dt

import pytest

from content_based_filtering import ContentBasedFiltering
from models import Algorithm, Event, EventType, Preference, ProductInfo
from preference_model import PreferenceModel
from product_catalog import HashCategoryCatalog, ProductCatalog

T0 = dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)


def _pref(user_id, product_id, rating, weight, seconds=0):
    return Preference(user_id=user_id, product_id=product_id, rating=rating,
                      interaction_type=EventType.PRODUCT_VIEW,
                      timestamp=T0 + dt.timedelta(seconds=seconds), weight=weight)


@pytest.fixture
def catalog():
    return ProductCatalog([
        ProductInfo("p1", "shoes"),
        ProductInfo("p2", "shoes"),
        ProductInfo("p3", "shoes"),
        ProductInfo("p4", "hats"),
    ])


def test_category_affinity_is_weight_normalised(catalog):
    model = PreferenceModel([
        _pref("u", "p1", 1.0, 0.3),
        _pref("u", "p4", 4.0, 0.7),
        _pref("u", "unknown", 5.0, 1.0),
    ])
    affinity = ContentBasedFiltering(model, catalog).category_affinity("u")
    assert affinity == {
        "shoes": pytest.approx(0.3 / 2.0),
        "hats": pytest.approx(2.8 / 2.0),
    }


def test_scores_candidates_by_base_rating_times_affinity(catalog):
    model = PreferenceModel([
        _pref("u", "p1", 1.0, 0.3),
        _pref("u", "p2", 5.0, 1.0),
        _pref("other", "p3", 4.0, 0.7),
        _pref("other", "p4", 4.0, 0.7),
    ])
    recs = ContentBasedFiltering(model, catalog).get_user_recommendations("u")

    assert [r.product_id for r in recs] == ["p3"]
    rec = recs[0]
    assert rec.score == pytest.approx(4.0 * (0.3 + 5.0) / 1.3)
    assert rec.algorithm == Algorithm.CONTENT
    assert rec.confidence == 0.8
    assert rec.reasoning == ["Based on your preference for shoes products"]


def test_base_rating_is_latest_created_other_user_rating(catalog):
    model = PreferenceModel([
        _pref("u", "p1", 5.0, 1.0),
        _pref("a", "p3", 2.0, 0.3),
        _pref("b", "p3", 4.0, 0.7),
    ])
    recs = ContentBasedFiltering(model, catalog).get_user_recommendations("u")
    assert recs[0].score == pytest.approx(4.0 * 5.0)


def test_later_update_to_older_row_does_not_change_base_rating(catalog):
    def event(event_type, product_id, seconds):
        return Event(id=f"e{seconds}", type=event_type, session_id="s1", product_id=product_id,
                     timestamp=T0 + dt.timedelta(seconds=seconds))

    model = PreferenceModel()
    model.update_preference("u", event(EventType.PURCHASE, "p1", 0))
    model.update_preference("v", event(EventType.ADD_TO_CART, "p3", 1))
    model.update_preference("w", event(EventType.PRODUCT_VIEW, "p3", 2))
    model.update_preference("v", event(EventType.PRODUCT_VIEW, "p3", 3))
    assert model.get("v", "p3").rating == 3.6

    recs = ContentBasedFiltering(model, catalog).get_user_recommendations("u")
    assert recs[0].product_id == "p3"
    assert recs[0].score == pytest.approx(1.0 * 5.0)


def test_unknown_category_candidates_are_excluded(catalog):
    model = PreferenceModel([
        _pref("u", "p1", 5.0, 1.0),
        _pref("other", "mystery", 5.0, 1.0),
    ])
    assert ContentBasedFiltering(model, catalog).get_user_recommendations("u") == []


def test_user_without_preferences_gets_nothing(catalog):
    model = PreferenceModel([_pref("other", "p3", 5.0, 1.0)])
    assert ContentBasedFiltering(model, catalog).get_user_recommendations("u") == []


def test_hash_fallback_is_flagged_degenerate():
    catalog = HashCategoryCatalog([ProductInfo("known", "shoes")])
    assert catalog.get("known").degenerate is False
    fabricated = catalog.get("p-42")
    assert fabricated.degenerate is True
    assert fabricated.category in ("electronics", "clothing", "home", "sports", "books", "beauty")
    assert catalog.category_of("p-42") == fabricated.category
