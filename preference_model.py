from __future__ import annotations
import logging
import math
from typing import Dict, Iterable, List, Optional, Tuple

from models import Event, EventType, Preference

logger = logging.getLogger(__name__)


# (rating, weight) per qualifying interaction type
INTERACTION_SIGNALS: Dict[EventType, Tuple[float, float]] = {
    EventType.PRODUCT_VIEW: (1.0, 0.1),
    EventType.PRODUCT_CLICK: (2.0, 0.3),
    EventType.REMOVE_FROM_CART: (1.0, 0.2),
    EventType.ADD_TO_CART: (4.0, 0.7),
    EventType.PURCHASE: (5.0, 1.0),
}

MIN_RATING = 1.0
MAX_RATING = 5.0


def round_rating(value: float) -> float:
    """Round half-up to one decimal and keep the value on the rating scale."""
    rounded = math.floor(value * 10 + 0.5) / 10
    return min(MAX_RATING, max(MIN_RATING, rounded))


class PreferenceModel:
    """Per-(user, product) weighted running mean of interaction ratings"""

    def __init__(self, preferences: Optional[Iterable[Preference]] = None):
        self._preferences: Dict[Tuple[str, str], Preference] = {}
        if preferences:
            self.replace(preferences)

    def update_preference(self, user_id: str, event: Event) -> Optional[Preference]:
        """
        Fold one event into the (user, product) preference.

        Events without a product or with a non-qualifying type are ignored.
        Returns the updated preference, or None when nothing changed.
        """
        if not event.product_id:
            return None
        signal = INTERACTION_SIGNALS.get(event.type)
        if signal is None:
            return None

        rating, weight = signal
        key = (user_id, event.product_id)
        existing = self._preferences.get(key)

        if existing is None:
            preference = Preference(
                user_id=user_id,
                product_id=event.product_id,
                rating=rating,
                interaction_type=event.type,
                timestamp=event.timestamp,
                weight=weight,
            )
        else:
            new_weight = existing.weight + weight
            new_rating = (existing.rating * existing.weight + rating * weight) / new_weight
            preference = Preference(
                user_id=user_id,
                product_id=event.product_id,
                rating=round_rating(new_rating),
                interaction_type=event.type,
                timestamp=event.timestamp,
                weight=new_weight,
            )

        # Assigning to an existing key keeps its creation position.
        self._preferences[key] = preference
        logger.debug(
            f"Preference {user_id}/{event.product_id}: rating={preference.rating} weight={preference.weight:.2f}"
        )
        return preference

    def get(self, user_id: str, product_id: str) -> Optional[Preference]:
        return self._preferences.get((user_id, product_id))

    def for_user(self, user_id: str) -> List[Preference]:
        return [p for p in self._preferences.values() if p.user_id == user_id]

    def ratings_for(self, user_id: str) -> Dict[str, float]:
        return {p.product_id: p.rating for p in self._preferences.values() if p.user_id == user_id}

    def user_ratings(self) -> Dict[str, Dict[str, float]]:
        """{user_id: {product_id: rating}} for every user"""
        ratings: Dict[str, Dict[str, float]] = {}
        for pref in self._preferences.values():
            ratings.setdefault(pref.user_id, {})[pref.product_id] = pref.rating
        return ratings

    def user_ids(self) -> List[str]:
        return list(dict.fromkeys(p.user_id for p in self._preferences.values()))

    def product_ids(self) -> List[str]:
        return list(dict.fromkeys(p.product_id for p in self._preferences.values()))

    def all(self) -> List[Preference]:
        return list(self._preferences.values())

    def replace(self, preferences: Iterable[Preference]) -> None:
        self._preferences = {(p.user_id, p.product_id): p for p in preferences}

    def reset(self) -> None:
        self._preferences = {}

    def __len__(self) -> int:
        return len(self._preferences)
