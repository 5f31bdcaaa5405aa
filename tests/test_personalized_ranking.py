import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import datetime as dt

import pytest

from models import ProductInfo
from personalized_ranking import (
    CustomerPreferences,
    OrderSummary,
    PersonalizedRanker,
    ShoppingContext,
    filter_by_brand,
    filter_by_category,
    filter_by_price_range,
    ranking_summary,
)

NOW = dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)


def test_preferences_from_purchase_history():
    orders = [
        OrderSummary(100.0, NOW - dt.timedelta(days=40), [
            ProductInfo("a", "shoes", 60.0, "Acme"),
            ProductInfo("b", "shoes", 40.0, "Acme"),
        ]),
        OrderSummary(50.0, NOW - dt.timedelta(days=10), [ProductInfo("c", "hats", 50.0, "Brim")]),
    ]
    prefs = CustomerPreferences.from_purchase_history(orders, now=NOW)

    assert prefs.favorite_categories == ["shoes", "hats"]
    assert prefs.preferred_price_range == pytest.approx((40.0, 120.0))
    assert prefs.preferred_brands == ["Acme", "Brim"]
    assert prefs.shopping_frequency == "high"


def test_shopping_frequency_bands():
    def freq(days):
        order = OrderSummary(10.0, NOW - dt.timedelta(days=days))
        return CustomerPreferences.from_purchase_history([order], now=NOW).shopping_frequency

    assert freq(5) == "high"
    assert freq(60) == "medium"
    assert freq(120) == "low"


def test_empty_history_uses_defaults():
    prefs = CustomerPreferences.from_purchase_history([])
    assert prefs.preferred_price_range == (0.0, 1000.0)
    assert prefs.favorite_categories == []


def test_scores_add_up_with_reasons():
    prefs = CustomerPreferences(
        favorite_categories=["shoes"],
        preferred_price_range=(0.0, 100.0),
        preferred_brands=["Acme"],
    )
    context = ShoppingContext(
        cart=[ProductInfo("x", "shoes")],
        recently_viewed=["a"],
        favorite_products=[ProductInfo("y", "shoes")],
        popular=["a"],
    )
    ranked = PersonalizedRanker(prefs).rank([
        ProductInfo("a", "shoes", 50.0, "Acme"),
        ProductInfo("b", "hats", 500.0, "Other"),
        ProductInfo("a", "shoes", 50.0, "Acme"),
    ], context)

    assert [r.product.product_id for r in ranked] == ["a", "b"]
    top = ranked[0]
    assert top.score == 50 + 40 + 30 + 35 + 20 + 25 + 10
    assert [r.type for r in top.reasons] == [
        "cart_similar", "category_preference", "price_range", "brand_preference",
        "recently_viewed", "purchase_history", "popular",
    ]
    assert ranked[1].score == 0


def test_rank_limits_to_ten():
    products = [ProductInfo(f"p{i}", "shoes", 10.0) for i in range(15)]
    assert len(PersonalizedRanker().rank(products, ShoppingContext())) == 10


def test_filters_and_summary():
    ranked = PersonalizedRanker().rank([
        ProductInfo("a", "shoes", 50.0, "Acme"),
        ProductInfo("b", "hats", 500.0, "Brim"),
    ], ShoppingContext())

    assert [r.product.product_id for r in filter_by_category(ranked, "hats")] == ["b"]
    assert [r.product.product_id for r in filter_by_price_range(ranked, 0, 100)] == ["a"]
    assert [r.product.product_id for r in filter_by_brand(ranked, "Acme")] == ["a"]

    summary = ranking_summary(ranked)
    assert summary["total_recommendations"] == 2
    assert summary["top_categories"] == ["shoes", "hats"]
    assert summary["average_score"] == pytest.approx(30.0)
    assert ranking_summary([])["average_score"] == 0.0
