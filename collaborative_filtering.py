from __future__ import annotations
import logging
import math
import numpy as np
from typing import Dict, List, Tuple
from collections import defaultdict

from models import Algorithm, RecommendationScore
from preference_model import PreferenceModel

logger = logging.getLogger(__name__)

TOP_SIMILAR_USERS = 5
VARIANCE_EPSILON = 1e-12


def pearson_similarity(ratings_1: Dict[str, float], ratings_2: Dict[str, float]) -> float:
    """
    Pearson correlation over the products both users rated.

    Returns 0 when there is no overlap or either side has no variance
    (zero denominator); otherwise the correlation clamped to [-1, 1].
    """
    common = sorted(set(ratings_1) & set(ratings_2))
    n = len(common)
    if n == 0:
        return 0.0

    r1 = np.array([ratings_1[pid] for pid in common], dtype=float)
    r2 = np.array([ratings_2[pid] for pid in common], dtype=float)

    sum1 = float(r1.sum())
    sum2 = float(r2.sum())
    sum1_sq = float(np.dot(r1, r1))
    sum2_sq = float(np.dot(r2, r2))
    p_sum = float(np.dot(r1, r2))

    num = p_sum - (sum1 * sum2 / n)
    var1 = sum1_sq - sum1 * sum1 / n
    var2 = sum2_sq - sum2 * sum2 / n
    # cancellation leaves residue on constant ratings; treat it as zero variance
    if var1 <= VARIANCE_EPSILON * sum1_sq or var2 <= VARIANCE_EPSILON * sum2_sq:
        return 0.0
    den = math.sqrt(var1 * var2)

    return max(-1.0, min(1.0, num / den))


class CollaborativeFiltering:
    """User-user collaborative filtering over the preference model"""

    def __init__(self, preferences: PreferenceModel, top_similar_users: int = TOP_SIMILAR_USERS):
        self.preferences = preferences
        self.top_similar_users = top_similar_users

    def user_similarity(self, user_id_1: str, user_id_2: str) -> float:
        return pearson_similarity(
            self.preferences.ratings_for(user_id_1),
            self.preferences.ratings_for(user_id_2),
        )

    def _similarities(self, user_id: str, all_ratings: Dict[str, Dict[str, float]]) -> List[Tuple[str, float]]:
        user_ratings = all_ratings.get(user_id, {})
        rated = set(user_ratings)

        similarities = []
        for other_user_id, other_ratings in all_ratings.items():
            if other_user_id == user_id or not rated.intersection(other_ratings):
                continue
            similarities.append((other_user_id, pearson_similarity(user_ratings, other_ratings)))

        # descending similarity, ties by lower user id
        similarities.sort(key=lambda x: (-x[1], x[0]))
        return similarities

    def get_similar_users(self, user_id: str, top_k: int = TOP_SIMILAR_USERS) -> List[Tuple[str, float]]:
        """Most similar users sharing at least one rated product"""
        return self._similarities(user_id, self.preferences.user_ratings())[:top_k]

    def get_user_recommendations(self, user_id: str, limit: int = 10) -> List[RecommendationScore]:
        all_ratings = self.preferences.user_ratings()
        user_ratings = all_ratings.get(user_id)
        if not user_ratings:
            return []

        top_users = self._similarities(user_id, all_ratings)[:self.top_similar_users]

        product_scores: Dict[str, Dict[str, float]] = defaultdict(lambda: {'score': 0.0, 'count': 0})
        for similar_user_id, similarity in top_users:
            for product_id, rating in all_ratings[similar_user_id].items():
                if product_id in user_ratings:
                    continue
                entry = product_scores[product_id]
                entry['score'] += rating * similarity
                entry['count'] += 1

        recommendations = []
        for product_id, entry in product_scores.items():
            count = int(entry['count'])
            recommendations.append(RecommendationScore(
                product_id=product_id,
                score=entry['score'] / count,
                algorithm=Algorithm.COLLABORATIVE,
                confidence=min(count / 3, 1.0),
                reasoning=[f"Recommended by {count} similar users"],
            ))

        recommendations.sort(key=lambda r: (-r.score, r.product_id))
        logger.debug(f"Collaborative: {len(recommendations)} candidates for user {user_id}")
        return recommendations[:limit]
