import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import datetime as dt

import polars as pl
import pytest

import analytics
from models import Event, EventType, Session

T0 = dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


def _event(i, event_type, session_id="s1", **fields):
    return Event(id=f"e{i}", type=event_type, timestamp=T0 + dt.timedelta(seconds=i),
                 session_id=session_id, **fields)


def _session(sid, minutes=None, **fields):
    end = T0 + dt.timedelta(minutes=minutes) if minutes is not None else None
    return Session(id=sid, start_time=T0, last_activity=T0, end_time=end, **fields)


def test_empty_summary_does_not_raise():
    summary = analytics.summarize([], [])
    assert summary.total_sessions == 0
    assert summary.total_events == 0
    assert summary.conversion_rate == 0
    assert summary.error_rate == 0
    assert summary.cart_abandonment_rate == 0
    assert summary.average_session_duration == 0


def test_summary_rates_and_rankings():
    sessions = [
        _session("s1", minutes=10, cart_interactions=1, purchases=1, total_scroll_depth=50, total_time_spent=1000),
        _session("s2", minutes=20, cart_interactions=2, total_scroll_depth=100, total_time_spent=3000),
        _session("s3"),
    ]
    events = [
        _event(0, EventType.PRODUCT_VIEW, product_id="p1", product_category="shoes"),
        _event(1, EventType.PRODUCT_VIEW, product_id="p2", product_category="hats"),
        _event(2, EventType.PRODUCT_VIEW, product_id="p2", product_category="hats"),
        _event(3, EventType.PURCHASE, product_id="p2", product_category="hats"),
        _event(4, EventType.SCREEN_VIEW, screen_name="home"),
        _event(5, EventType.ERROR, error_message="boom"),
    ]
    summary = analytics.summarize(sessions, events)

    assert summary.total_sessions == 3
    assert summary.total_events == 6
    assert summary.average_session_duration == pytest.approx(15 * 60 * 1000)
    assert summary.conversion_rate == pytest.approx(1 / 3)
    assert summary.error_rate == pytest.approx(1 / 6)
    assert summary.cart_abandonment_rate == pytest.approx(1 / 3)
    assert summary.average_scroll_depth == pytest.approx(50)
    assert summary.average_time_spent == pytest.approx(4000 / 3)
    assert summary.most_viewed_categories == [
        {"category": "hats", "count": 3},
        {"category": "shoes", "count": 1},
    ]
    assert summary.most_interacted_products[0] == {"product_id": "p2", "count": 3}
    assert summary.top_performing_screens == [{"screen_name": "home", "engagement": 1}]


def test_ties_keep_first_seen_order():
    events = [
        _event(0, EventType.PRODUCT_VIEW, product_id="b"),
        _event(1, EventType.PRODUCT_VIEW, product_id="a"),
    ]
    summary = analytics.summarize([], events)
    assert [p["product_id"] for p in summary.most_interacted_products] == ["b", "a"]


def test_product_affinity_groups():
    groups = analytics.product_affinity_groups(
        {"u1": ["p1", "p2"], "u2": ["p1", "p2", "p3"]},
        total_preferences=5,
    )
    # each unordered pair is counted once per ordering per user
    assert groups[0]["products"] == ["p1", "p2"]
    assert groups[0]["strength"] == pytest.approx(4 / 5)
    assert all("p1" not in g["products"] for g in groups[1:])


def test_seasonal_trends():
    events = [_event(i, EventType.PRODUCT_VIEW) for i in range(4)]
    trends = analytics.seasonal_trends(events)
    assert trends == [{"month": "Mar", "trend": 1.0, "confidence": pytest.approx(0.4)}]
    assert analytics.seasonal_trends([]) == []


def test_events_frame_and_counts():
    events = [
        _event(0, EventType.PRODUCT_VIEW, product_id="p1"),
        _event(1, EventType.PRODUCT_VIEW, product_id="p2"),
        _event(2, EventType.PURCHASE, product_id="p2"),
    ]
    df = analytics.events_frame(events)
    assert df.height == 3
    assert df.schema["timestamp"] == pl.Datetime("us")

    counts = analytics.event_type_counts(events)
    assert counts.to_dicts() == [
        {"type": "product_view", "count": 2},
        {"type": "purchase", "count": 1},
    ]
    assert analytics.event_type_counts([]).is_empty()


def test_export_events_writes_parquet(tmp_path):
    path = tmp_path / "out" / "events.parquet"
    events = [_event(0, EventType.SEARCH, search_query="boots")]
    assert analytics.export_events(events, str(path)) == str(path)
    assert pl.read_parquet(path)["search_query"].to_list() == ["boots"]
    assert analytics.export_events([], str(tmp_path / "empty.parquet")) == ""
