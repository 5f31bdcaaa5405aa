import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import datetime as dt

import pytest

from models import Event, EventType
from preference_model import PreferenceModel, round_rating

T0 = dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


def _event(event_type, product_id="p1", seconds=0):
    return Event(
        id=f"e-{seconds}",
        type=event_type,
        timestamp=T0 + dt.timedelta(seconds=seconds),
        session_id="s1",
        product_id=product_id,
    )


def test_first_interaction_inserts_table_values():
    model = PreferenceModel()
    pref = model.update_preference("u1", _event(EventType.ADD_TO_CART))
    assert pref.rating == 4.0
    assert pref.weight == pytest.approx(0.7)
    assert pref.interaction_type == EventType.ADD_TO_CART
    assert len(model) == 1


def test_repeated_views_accumulate_weight_but_keep_rating():
    model = PreferenceModel()
    for i in range(3):
        model.update_preference("u1", _event(EventType.PRODUCT_VIEW, seconds=i))
    pref = model.get("u1", "p1")
    assert pref.rating == 1.0
    assert pref.weight == pytest.approx(0.3)


def test_weighted_mean_is_rounded_half_up():
    model = PreferenceModel()
    model.update_preference("u1", _event(EventType.PRODUCT_VIEW))
    pref = model.update_preference("u1", _event(EventType.PURCHASE, seconds=1))
    # (1*0.1 + 5*1.0) / 1.1 = 4.636...
    assert pref.rating == 4.6
    assert pref.weight == pytest.approx(1.1)
    assert pref.interaction_type == EventType.PURCHASE
    assert pref.timestamp == T0 + dt.timedelta(seconds=1)


def test_weight_never_decreases_and_rating_stays_in_range():
    model = PreferenceModel()
    last_weight = 0.0
    for i, event_type in enumerate([
        EventType.PURCHASE, EventType.REMOVE_FROM_CART, EventType.PRODUCT_VIEW,
        EventType.PRODUCT_CLICK, EventType.ADD_TO_CART, EventType.REMOVE_FROM_CART,
    ]):
        pref = model.update_preference("u1", _event(event_type, seconds=i))
        assert pref.weight >= last_weight
        assert 1.0 <= pref.rating <= 5.0
        last_weight = pref.weight


def test_non_qualifying_or_productless_events_are_ignored():
    model = PreferenceModel()
    assert model.update_preference("u1", _event(EventType.SEARCH)) is None
    assert model.update_preference("u1", _event(EventType.CART_ABANDON)) is None
    assert model.update_preference("u1", _event(EventType.PURCHASE, product_id=None)) is None
    assert len(model) == 0


def test_updates_keep_creation_order():
    model = PreferenceModel()
    model.update_preference("u1", _event(EventType.PRODUCT_VIEW, "p1"))
    model.update_preference("u2", _event(EventType.PRODUCT_VIEW, "p2"))
    model.update_preference("u1", _event(EventType.PURCHASE, "p1", seconds=5))

    assert [p.user_id for p in model.all()] == ["u1", "u2"]
    assert model.user_ids() == ["u1", "u2"]
    assert model.product_ids() == ["p1", "p2"]
    assert model.ratings_for("u1") == {"p1": 4.6}
    assert list(model.user_ratings()) == ["u1", "u2"]


def test_round_rating_half_up_and_clamped():
    assert round_rating(2.25) == 2.3
    assert round_rating(0.2) == 1.0
    assert round_rating(7.0) == 5.0
