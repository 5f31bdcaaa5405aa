"""
Contextual personalization over catalog candidates.

Scores candidate products against what is known outside the event-driven
preference model: the cart contents and the customer's purchase-history
summary. Each matched signal adds fixed points and a human-readable reason.
"""
from __future__ import annotations
import datetime as dt
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set

from models import ProductInfo

logger = logging.getLogger(__name__)

DEFAULT_PRICE_RANGE = (0.0, 1000.0)
MAX_RESULTS = 10


@dataclass
class RecommendationReason:
    type: str
    confidence: float
    description: str


@dataclass
class PersonalizedProduct:
    product: ProductInfo
    reasons: List[RecommendationReason]
    score: float


@dataclass
class OrderSummary:
    """One past order from the customer's purchase history"""
    total_price: float
    created_at: dt.datetime
    products: List[ProductInfo] = field(default_factory=list)


@dataclass
class CustomerPreferences:
    favorite_categories: List[str] = field(default_factory=list)
    preferred_price_range: tuple = DEFAULT_PRICE_RANGE
    shopping_frequency: str = "low"
    preferred_brands: List[str] = field(default_factory=list)

    @classmethod
    def from_purchase_history(
        cls,
        orders: Sequence[OrderSummary],
        now: Optional[dt.datetime] = None,
    ) -> "CustomerPreferences":
        """Seed defaults from order history before any events exist."""
        if not orders:
            return cls()

        purchased = [p for order in orders for p in order.products]

        category_counts = Counter(p.category for p in purchased if p.category)
        favorite_categories = [c for c, _ in sorted(category_counts.items(), key=lambda x: x[1], reverse=True)[:5]]

        order_values = [o.total_price for o in orders if o.total_price > 0]
        if order_values:
            price_range = (min(order_values) * 0.8, max(order_values) * 1.2)
        else:
            price_range = DEFAULT_PRICE_RANGE

        latest = max(o.created_at for o in orders)
        now = now or dt.datetime.now(latest.tzinfo)
        days_since_last_order = (now - latest).total_seconds() / 86400
        if days_since_last_order < 30:
            frequency = "high"
        elif days_since_last_order < 90:
            frequency = "medium"
        else:
            frequency = "low"

        brand_counts = Counter(p.vendor for p in purchased if p.vendor)
        preferred_brands = [b for b, _ in sorted(brand_counts.items(), key=lambda x: x[1], reverse=True)[:3]]

        return cls(
            favorite_categories=favorite_categories,
            preferred_price_range=price_range,
            shopping_frequency=frequency,
            preferred_brands=preferred_brands,
        )


@dataclass
class ShoppingContext:
    """Cart and browsing state the ranking reads from"""
    cart: List[ProductInfo] = field(default_factory=list)
    recently_viewed: List[str] = field(default_factory=list)
    favorite_products: List[ProductInfo] = field(default_factory=list)
    popular: List[str] = field(default_factory=list)


# (reason type, points, confidence, description)
CART_SIMILAR = ('cart_similar', 50, 0.8, 'Similar to items in your cart')
CATEGORY_PREFERENCE = ('category_preference', 40, 0.9, 'Based on your favorite categories')
PRICE_RANGE = ('price_range', 30, 0.7, 'Within your preferred price range')
BRAND_PREFERENCE = ('brand_preference', 35, 0.8, 'From brands you love')
RECENTLY_VIEWED = ('recently_viewed', 20, 0.6, 'You recently viewed this')
PURCHASE_HISTORY = ('purchase_history', 25, 0.7, "Similar to products you've purchased")
POPULAR = ('popular', 10, 0.5, 'Popular among customers')


class PersonalizedRanker:
    """Additive rule-based ranking with explanations"""

    def __init__(self, preferences: Optional[CustomerPreferences] = None):
        self.preferences = preferences or CustomerPreferences()

    def score_product(self, product: ProductInfo, context: ShoppingContext) -> PersonalizedProduct:
        reasons: List[RecommendationReason] = []
        score = 0.0

        def add(rule):
            nonlocal score
            reason_type, points, confidence, description = rule
            score += points
            reasons.append(RecommendationReason(reason_type, confidence, description))

        cart_categories: Set[str] = {p.category for p in context.cart if p.category}
        if product.category and product.category in cart_categories:
            add(CART_SIMILAR)

        if product.category and product.category in self.preferences.favorite_categories:
            add(CATEGORY_PREFERENCE)

        low, high = self.preferences.preferred_price_range
        price = product.price or 0.0
        if low <= price <= high:
            add(PRICE_RANGE)

        if product.vendor and product.vendor in self.preferences.preferred_brands:
            add(BRAND_PREFERENCE)

        if product.product_id in context.recently_viewed:
            add(RECENTLY_VIEWED)

        favorite_categories = {p.category for p in context.favorite_products if p.category}
        if product.category and product.category in favorite_categories:
            add(PURCHASE_HISTORY)

        if product.product_id in context.popular:
            add(POPULAR)

        return PersonalizedProduct(product=product, reasons=reasons, score=score)

    def rank(self, candidates: Iterable[ProductInfo], context: ShoppingContext,
             limit: Optional[int] = MAX_RESULTS) -> List[PersonalizedProduct]:
        """Highest score first; ``limit=None`` keeps every candidate."""
        unique = {}
        for product in candidates:
            unique.setdefault(product.product_id, product)

        scored = [self.score_product(p, context) for p in unique.values()]
        scored.sort(key=lambda x: x.score, reverse=True)
        return scored[:limit]


def filter_by_category(recs: Iterable[PersonalizedProduct], category: str) -> List[PersonalizedProduct]:
    return [r for r in recs if r.product.category == category]


def filter_by_price_range(recs: Iterable[PersonalizedProduct], low: float, high: float) -> List[PersonalizedProduct]:
    return [r for r in recs if low <= (r.product.price or 0.0) <= high]


def filter_by_brand(recs: Iterable[PersonalizedProduct], brand: str) -> List[PersonalizedProduct]:
    return [r for r in recs if r.product.vendor == brand]


def ranking_summary(recs: Sequence[PersonalizedProduct]) -> dict:
    categories = list(dict.fromkeys(r.product.category for r in recs if r.product.category))
    return {
        'total_recommendations': len(recs),
        'top_categories': categories[:5],
        'average_score': sum(r.score for r in recs) / len(recs) if recs else 0.0,
    }
