from __future__ import annotations
import logging
from typing import Dict, List, Optional
from collections import defaultdict

from models import Algorithm, RecommendationScore
from preference_model import PreferenceModel
from product_catalog import ProductCatalog

logger = logging.getLogger(__name__)

CONTENT_CONFIDENCE = 0.8


class ContentBasedFiltering:
    """Category-affinity recommendations built from a user's own preferences"""

    def __init__(self, preferences: PreferenceModel, catalog: ProductCatalog):
        self.preferences = preferences
        self.catalog = catalog

    def category_affinity(self, user_id: str) -> Dict[str, float]:
        """
        Sum of rating * weight per category, normalised by the user's total
        preference weight. Products without a known category add weight but no
        affinity.
        """
        user_prefs = self.preferences.for_user(user_id)
        if not user_prefs:
            return {}

        total_weight = sum(pref.weight for pref in user_prefs)
        if total_weight <= 0:
            return {}

        category_weights: Dict[str, float] = defaultdict(float)
        for pref in user_prefs:
            category = self.catalog.category_of(pref.product_id)
            if category:
                category_weights[category] += pref.rating * pref.weight

        return {category: value / total_weight for category, value in category_weights.items()}

    def _candidate_ratings(self, user_id: str) -> Dict[str, float]:
        """Unrated products with the rating from the most recently created other-user preference."""
        rated = set(self.preferences.ratings_for(user_id))
        candidates: Dict[str, float] = {}
        for pref in self.preferences.all():
            if pref.user_id == user_id or pref.product_id in rated:
                continue
            candidates[pref.product_id] = pref.rating
        return candidates

    def get_user_recommendations(self, user_id: str, limit: int = 10) -> List[RecommendationScore]:
        affinity = self.category_affinity(user_id)
        if not affinity:
            return []

        recommendations = []
        for product_id, base_rating in self._candidate_ratings(user_id).items():
            category: Optional[str] = self.catalog.category_of(product_id)
            if category is None:
                # no metadata: excluded rather than scored as zero
                continue
            category_score = affinity.get(category, 0.0)
            if category_score == 0:
                continue
            recommendations.append(RecommendationScore(
                product_id=product_id,
                score=base_rating * category_score,
                algorithm=Algorithm.CONTENT,
                confidence=CONTENT_CONFIDENCE,
                reasoning=[f"Based on your preference for {category} products"],
            ))

        recommendations.sort(key=lambda r: (-r.score, r.product_id))
        logger.debug(f"Content-based: {len(recommendations)} candidates for user {user_id}")
        return recommendations[:limit]
