from __future__ import annotations
import datetime as dt
import logging
import os
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence

import polars as pl

from models import (
    AnalyticsSummary,
    EnhancedAnalyticsSummary,
    Event,
    EventType,
    Session,
    UserBehavior,
)
from predictive_heuristics import PredictiveHeuristics, churn_risk, lifetime_value

logger = logging.getLogger(__name__)

TOP_N = 5


def _top_counts(values: Iterable[str], key: str, count_key: str = "count") -> List[Dict]:
    """Most frequent values; ties keep first-seen order."""
    counts = Counter(v for v in values if v)
    ranked = sorted(counts.items(), key=lambda x: x[1], reverse=True)[:TOP_N]
    return [{key: value, count_key: count} for value, count in ranked]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def summarize(sessions: Sequence[Session], events: Sequence[Event]) -> AnalyticsSummary:
    total_sessions = len(sessions)
    total_events = len(events)

    completed = [s.duration_ms for s in sessions if s.end_time is not None]

    purchases = sum(1 for e in events if e.type == EventType.PURCHASE)
    errors = sum(1 for e in events if e.type == EventType.ERROR)
    abandoned = sum(1 for s in sessions if s.cart_interactions > 0 and s.purchases == 0)

    return AnalyticsSummary(
        total_sessions=total_sessions,
        total_events=total_events,
        average_session_duration=_mean(completed),
        most_viewed_categories=_top_counts((e.product_category for e in events), "category"),
        most_interacted_products=_top_counts((e.product_id for e in events), "product_id"),
        conversion_rate=purchases / total_sessions if total_sessions else 0.0,
        cart_abandonment_rate=abandoned / total_sessions if total_sessions else 0.0,
        average_scroll_depth=_mean([s.total_scroll_depth for s in sessions]),
        average_time_spent=_mean([s.total_time_spent for s in sessions]),
        top_performing_screens=_top_counts((e.screen_name for e in events), "screen_name", "engagement"),
        error_rate=errors / total_events if total_events else 0.0,
    )


# ----------------------------------------------------------------------
# enhanced insights

SEGMENTS = [
    ('High Value', lambda b: b.avg_rating > 4 and b.purchase_rate > 0.5),
    ('Engaged', lambda b: b.total_interactions > 5),
    ('At Risk', lambda b: b.avg_rating < 2.5 or b.purchase_rate < 0.2),
    ('New', lambda b: b.total_interactions <= 2),
]


def user_segments(behaviors: Dict[str, UserBehavior]) -> List[Dict]:
    segments = []
    for name, criteria in SEGMENTS:
        matching = [b for b in behaviors.values() if criteria(b)]
        if not matching:
            continue
        avg_value = sum(lifetime_value(b) for b in matching) / len(matching)
        segments.append({'segment': name, 'count': len(matching), 'avg_value': int(avg_value + 0.5)})
    return segments


def product_affinity_groups(user_products: Dict[str, List[str]], total_preferences: int) -> List[Dict]:
    """Pairs of products that co-occur in at least two user preference lists"""
    pair_counts: Counter = Counter()
    for products in user_products.values():
        for first in products:
            for second in products:
                if first != second:
                    pair_counts[tuple(sorted((first, second)))] += 1

    groups = []
    processed = set()
    for (first, second), strength in pair_counts.items():
        if strength < 2 or first in processed or second in processed:
            continue
        processed.update((first, second))
        groups.append({
            'group': f"Group {len(groups) + 1}",
            'products': [first, second],
            'strength': strength / total_preferences if total_preferences else 0.0,
        })

    groups.sort(key=lambda g: g['strength'], reverse=True)
    return groups[:TOP_N]


def seasonal_trends(events: Sequence[Event]) -> List[Dict]:
    if not events:
        return []
    monthly = Counter(e.timestamp.strftime('%b') for e in events)
    total = len(events)
    trends = [
        {'month': month, 'trend': count / total, 'confidence': min(count / 10, 1.0)}
        for month, count in monthly.items()
    ]
    trends.sort(key=lambda t: t['trend'], reverse=True)
    return trends


def enhanced_summary(
    sessions: Sequence[Session],
    events: Sequence[Event],
    heuristics: PredictiveHeuristics,
    prediction_user_id: Optional[str] = None,
) -> EnhancedAnalyticsSummary:
    base = summarize(sessions, events)

    preferences = heuristics.preferences
    user_ids = preferences.user_ids()
    behaviors = {uid: heuristics.analyze_user_behavior(uid) for uid in user_ids}
    user_products = {uid: [p.product_id for p in preferences.for_user(uid)] for uid in user_ids}

    top_predictions = []
    if prediction_user_id is not None:
        top_predictions = heuristics.predict(prediction_user_id)[:TOP_N]

    return EnhancedAnalyticsSummary(
        **vars(base),
        user_segments=user_segments(behaviors),
        product_affinity_groups=product_affinity_groups(user_products, len(preferences)),
        seasonal_trends=seasonal_trends(events),
        top_predictions=top_predictions,
        churn_risk_users=[uid for uid, b in behaviors.items() if churn_risk(b) > 0.7][:10],
        high_value_users=[uid for uid, b in behaviors.items() if lifetime_value(b) > 200][:10],
    )


# ----------------------------------------------------------------------
# reporting export

EVENT_SCHEMA = {
    'id': pl.Utf8,
    'type': pl.Utf8,
    'timestamp': pl.Datetime('us'),
    'session_id': pl.Utf8,
    'user_id': pl.Utf8,
    'product_id': pl.Utf8,
    'product_category': pl.Utf8,
    'search_query': pl.Utf8,
    'duration': pl.Float64,
    'screen_name': pl.Utf8,
    'element_id': pl.Utf8,
    'error_message': pl.Utf8,
}


def _naive_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(dt.timezone.utc).replace(tzinfo=None)


def events_frame(events: Sequence[Event]) -> pl.DataFrame:
    """Flat Polars frame of the event log for reporting."""
    rows = [{
        'id': e.id,
        'type': e.type.value,
        'timestamp': _naive_utc(e.timestamp),
        'session_id': e.session_id,
        'user_id': e.user_id,
        'product_id': e.product_id,
        'product_category': e.product_category,
        'search_query': e.search_query,
        'duration': float(e.duration) if e.duration is not None else None,
        'screen_name': e.screen_name,
        'element_id': e.element_id,
        'error_message': e.error_message,
    } for e in events]
    return pl.DataFrame(rows, schema=EVENT_SCHEMA)


def event_type_counts(events: Sequence[Event]) -> pl.DataFrame:
    df = events_frame(events)
    if df.is_empty():
        return pl.DataFrame({'type': [], 'count': []}, schema={'type': pl.Utf8, 'count': pl.UInt32})
    return df.group_by('type').agg(pl.len().alias('count')).sort(['count', 'type'], descending=[True, False])


def export_events(events: Sequence[Event], path: str) -> str:
    """Write the event log to Parquet. Returns the path, or "" when empty."""
    df = events_frame(events)
    if df.is_empty():
        logger.info("No events to export")
        return ""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    df.write_parquet(path)
    logger.info(f"Exported {df.height} events to {path}")
    return path
