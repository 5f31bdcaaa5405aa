from __future__ import annotations
import logging
from typing import Dict, List, Optional
from collections import defaultdict

from models import Algorithm, RecommendationScore
from collaborative_filtering import CollaborativeFiltering
from content_based_filtering import ContentBasedFiltering

logger = logging.getLogger(__name__)

COLLABORATIVE_WEIGHT = 0.6
CONTENT_WEIGHT = 0.4


class HybridRecommender:
    """Fixed-weight merge of collaborative and content-based scores"""

    def __init__(self, collaborative_model: CollaborativeFiltering, content_model: ContentBasedFiltering):
        self.collaborative_model = collaborative_model
        self.content_model = content_model

    def get_recommendations(self, user_id: str, limit: int = 10) -> List[RecommendationScore]:
        collab_recs = self.collaborative_model.get_user_recommendations(user_id, limit * 2)
        content_recs = self.content_model.get_user_recommendations(user_id, limit * 2)
        return combine_recommendations(collab_recs, content_recs, limit)


def combine_recommendations(
    collab_recs: List[RecommendationScore],
    content_recs: List[RecommendationScore],
    limit: int,
) -> List[RecommendationScore]:
    """
    hybrid = 0.6 * collaborative + 0.4 * content, with 0 for a missing side.
    Confidence grows with the number of algorithms that proposed the product.
    """
    combined: Dict[str, Dict[str, Optional[float]]] = defaultdict(
        lambda: {'collaborative': None, 'content': None, 'count': 0}
    )

    for side, recs in (('collaborative', collab_recs), ('content', content_recs)):
        for rec in recs:
            entry = combined[rec.product_id]
            current = entry[side]
            entry[side] = rec.score if current is None else max(current, rec.score)
            entry['count'] += 1

    recommendations = []
    for product_id, entry in combined.items():
        collaborative = entry['collaborative'] or 0.0
        content = entry['content'] or 0.0
        count = int(entry['count'])
        recommendations.append(RecommendationScore(
            product_id=product_id,
            score=collaborative * COLLABORATIVE_WEIGHT + content * CONTENT_WEIGHT,
            algorithm=Algorithm.HYBRID,
            confidence=min(count / 2, 1.0),
            reasoning=[
                'Recommended by multiple algorithms' if count > 1 else 'Hybrid recommendation',
                f"Collaborative: {collaborative:.2f}, Content: {content:.2f}",
            ],
        ))

    recommendations.sort(key=lambda r: (-r.score, r.product_id))
    return recommendations[:limit]
