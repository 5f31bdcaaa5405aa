"""
Closed-form behavioral heuristics: purchase probability, churn risk,
lifetime value and next-purchase horizon.

These are fixed formulas over a per-user behavior summary, not trained
models. The constants are part of the contract.
"""
from __future__ import annotations
import logging
import math
from typing import Callable, Iterable, List, Optional

from models import Event, EventType, MLPrediction, UserBehavior
from preference_model import PreferenceModel
from content_based_filtering import ContentBasedFiltering

logger = logging.getLogger(__name__)

BASE_PURCHASE_PROBABILITY = 0.3
BASE_CHURN_RISK = 0.5
BASE_LIFETIME_VALUE = 100
BASE_NEXT_PURCHASE_DAYS = 30
# affinity assumed when the product's category is unknown
NEUTRAL_CATEGORY_AFFINITY = 0.5


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def purchase_probability(behavior: UserBehavior, category_affinity: float) -> float:
    probability = BASE_PURCHASE_PROBABILITY
    if behavior.avg_rating > 4:
        probability += 0.2
    if behavior.avg_rating > 3:
        probability += 0.1
    probability += behavior.purchase_rate * 0.3
    probability += category_affinity * 0.2
    return _clamp01(probability)


def churn_risk(behavior: UserBehavior) -> float:
    risk = BASE_CHURN_RISK
    # low engagement
    if behavior.total_interactions < 3:
        risk += 0.3
    if behavior.avg_rating < 2.5:
        risk += 0.2
    if behavior.purchase_rate < 0.2:
        risk += 0.2
    # high engagement
    if behavior.total_interactions > 10:
        risk -= 0.2
    if behavior.avg_rating > 4:
        risk -= 0.2
    if behavior.purchase_rate > 0.6:
        risk -= 0.2
    return _clamp01(risk)


def lifetime_value(behavior: UserBehavior) -> int:
    rating_multiplier = behavior.avg_rating / 5
    purchase_multiplier = behavior.purchase_rate * 2
    engagement_multiplier = min(2, behavior.total_interactions / 5)
    return _round_half_up(BASE_LIFETIME_VALUE * rating_multiplier * purchase_multiplier * engagement_multiplier)


def next_purchase_time_days(behavior: UserBehavior) -> int:
    activity_multiplier = max(0.5, 1 - behavior.total_interactions * 0.1)
    purchase_multiplier = 0.7 if behavior.purchase_rate > 0.5 else 1.3
    return _round_half_up(BASE_NEXT_PURCHASE_DAYS * activity_multiplier * purchase_multiplier)


class PredictiveHeuristics:
    """Per-user predictions over the preference model and the event log"""

    def __init__(
        self,
        preferences: PreferenceModel,
        content_model: ContentBasedFiltering,
        events_for_user: Optional[Callable[[str], Iterable[Event]]] = None,
    ):
        """
        Args:
            preferences: preference model to summarise
            content_model: source of category affinity and catalog lookups
            events_for_user: returns the events recorded in a user's sessions
        """
        self.preferences = preferences
        self.content_model = content_model
        self.events_for_user = events_for_user or (lambda user_id: [])

    def analyze_user_behavior(self, user_id: str) -> UserBehavior:
        user_prefs = self.preferences.for_user(user_id)
        user_events = list(self.events_for_user(user_id))

        n = len(user_prefs)
        if n:
            avg_rating = sum(p.rating for p in user_prefs) / n
            purchases = sum(1 for p in user_prefs if p.interaction_type == EventType.PURCHASE)
            purchase_rate = purchases / n
        else:
            avg_rating = 0.0
            purchase_rate = 0.0

        if user_events:
            avg_session_duration = sum(e.duration or 0 for e in user_events) / len(user_events)
        else:
            avg_session_duration = 0.0

        catalog = self.content_model.catalog
        categories = {catalog.category_of(p.product_id) for p in user_prefs}
        categories.discard(None)

        return UserBehavior(
            avg_rating=avg_rating,
            total_interactions=n,
            purchase_rate=purchase_rate,
            avg_session_duration=avg_session_duration,
            category_diversity=len(categories),
        )

    def purchase_probability(self, user_id: str, product_id: str, behavior: Optional[UserBehavior] = None) -> float:
        behavior = behavior or self.analyze_user_behavior(user_id)
        category = self.content_model.catalog.category_of(product_id)
        if category is None:
            affinity = NEUTRAL_CATEGORY_AFFINITY
        else:
            affinity = self.content_model.category_affinity(user_id).get(category, 0.0)
        return purchase_probability(behavior, affinity)

    def churn_risk(self, user_id: str) -> float:
        return churn_risk(self.analyze_user_behavior(user_id))

    def lifetime_value(self, user_id: str) -> int:
        return lifetime_value(self.analyze_user_behavior(user_id))

    def next_purchase_time_days(self, user_id: str) -> int:
        return next_purchase_time_days(self.analyze_user_behavior(user_id))

    def predict(self, user_id: str, limit: int = 10) -> List[MLPrediction]:
        """Predictions for every known product the user has not rated yet"""
        if not self.preferences.for_user(user_id):
            return []

        behavior = self.analyze_user_behavior(user_id)
        rated = set(self.preferences.ratings_for(user_id))
        affinity = self.content_model.category_affinity(user_id)
        catalog = self.content_model.catalog

        risk = churn_risk(behavior)
        value = lifetime_value(behavior)
        horizon = next_purchase_time_days(behavior)

        predictions = []
        for product_id in self.preferences.product_ids():
            if product_id in rated:
                continue
            category = catalog.category_of(product_id)
            category_affinity = NEUTRAL_CATEGORY_AFFINITY if category is None else affinity.get(category, 0.0)
            predictions.append(MLPrediction(
                product_id=product_id,
                purchase_probability=purchase_probability(behavior, category_affinity),
                next_purchase_time_days=horizon,
                churn_risk=risk,
                lifetime_value=value,
            ))

        predictions.sort(key=lambda p: (-p.purchase_probability, p.product_id))
        return predictions[:limit]
