"""
Product catalog lookups used by the content-based engine and the heuristics.

The catalog is an external collaborator: the engine only reads from it. Real
metadata (registered or loaded from the shop database) is authoritative.
Categories carried on tracked events fill gaps but never override it.
"""
from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from models import ProductInfo

logger = logging.getLogger(__name__)

FALLBACK_CATEGORIES = ['electronics', 'clothing', 'home', 'sports', 'books', 'beauty']


class ProductCatalog:
    """In-memory product metadata keyed by product id"""

    def __init__(self, products: Optional[Iterable[ProductInfo]] = None):
        self._products: Dict[str, ProductInfo] = {}
        self._authoritative: set = set()
        for product in products or []:
            self.register(product)

    def register(self, info: ProductInfo) -> None:
        """Add or replace authoritative metadata for a product."""
        self._products[info.product_id] = info
        self._authoritative.add(info.product_id)

    def observe(self, product_id: str, category: Optional[str]) -> None:
        """Remember the category an event carried, unless real metadata exists."""
        if not product_id or not category or product_id in self._authoritative:
            return
        existing = self._products.get(product_id)
        if existing is None:
            self._products[product_id] = ProductInfo(product_id=product_id, category=category)
        elif existing.category is None:
            existing.category = category

    def get(self, product_id: str) -> Optional[ProductInfo]:
        return self._products.get(product_id)

    def category_of(self, product_id: str) -> Optional[str]:
        info = self.get(product_id)
        return info.category if info else None

    def products(self) -> List[ProductInfo]:
        return list(self._products.values())

    def clear_observed(self) -> None:
        """Forget categories learned from events."""
        self._products = {pid: p for pid, p in self._products.items() if pid in self._authoritative}

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._products

    def __len__(self) -> int:
        return len(self._products)


def hash_category(product_id: str) -> str:
    """Map a product id onto a fixed category list by 32-bit string hash."""
    value = 0
    for char in product_id:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return FALLBACK_CATEGORIES[abs(value) % len(FALLBACK_CATEGORIES)]


class HashCategoryCatalog(ProductCatalog):
    """
    Degenerate mode: when no metadata is known, fabricate a category from the
    product id hash. The category carries no product meaning; every record it
    produces is flagged with ``degenerate=True``.
    """

    def __init__(self, products: Optional[Iterable[ProductInfo]] = None):
        super().__init__(products)
        logger.warning(
            "Hash category fallback enabled: categories for unknown products are "
            "derived from id hashes and do not reflect real catalog data"
        )

    def get(self, product_id: str) -> Optional[ProductInfo]:
        info = super().get(product_id)
        if info is not None and info.category is not None:
            return info
        if not product_id:
            return None
        return ProductInfo(
            product_id=product_id,
            category=hash_category(product_id),
            price=info.price if info else None,
            vendor=info.vendor if info else None,
            degenerate=True,
        )


def load_catalog_from_db(url: str, engine: Optional[Engine] = None) -> ProductCatalog:
    """Build a catalog from a ``products`` table (id, category, price, vendor)."""
    engine = engine or create_engine(url, pool_pre_ping=True, pool_recycle=3600)
    sql = text("""
        SELECT id, category, price, vendor
        FROM products
    """)

    with engine.connect() as conn:
        rows = conn.execute(sql).mappings()
        products = [ProductInfo(
            product_id=str(row['id']),
            category=row.get('category'),
            price=float(row['price']) if row.get('price') is not None else None,
            vendor=row.get('vendor'),
        ) for row in rows]

    logger.info(f"Loaded {len(products)} products into catalog")
    return ProductCatalog(products)


def build_catalog(db_url: Optional[str] = None, fallback: str = "none") -> ProductCatalog:
    """Catalog for the configured source and fallback mode."""
    products: List[ProductInfo] = []
    if db_url:
        products = load_catalog_from_db(db_url).products()
    if fallback == "hash":
        return HashCategoryCatalog(products)
    return ProductCatalog(products)
