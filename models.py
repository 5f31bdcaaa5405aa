from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional
import datetime as dt


def _to_iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Any) -> Optional[dt.datetime]:
    if value is None or isinstance(value, dt.datetime):
        return value
    return dt.datetime.fromisoformat(value)


class EventType(str, Enum):
    """Interaction types the tracker understands"""
    PRODUCT_VIEW = "product_view"
    PRODUCT_CLICK = "product_click"
    ADD_TO_CART = "add_to_cart"
    REMOVE_FROM_CART = "remove_from_cart"
    PURCHASE = "purchase"
    SEARCH = "search"
    CATEGORY_BROWSE = "category_browse"
    CART_ABANDON = "cart_abandon"
    SCROLL = "scroll"
    TIME_SPENT = "time_spent"
    SCREEN_VIEW = "screen_view"
    BUTTON_CLICK = "button_click"
    FORM_INTERACTION = "form_interaction"
    ERROR = "error"
    PERFORMANCE = "performance"


class Algorithm(str, Enum):
    COLLABORATIVE = "collaborative"
    CONTENT = "content"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class PerformanceMetrics:
    load_time: Optional[float] = None
    render_time: Optional[float] = None
    interaction_time: Optional[float] = None


@dataclass(frozen=True)
class Event:
    """One observed interaction. Immutable once recorded."""
    id: str
    type: EventType
    timestamp: dt.datetime
    session_id: str
    user_id: Optional[str] = None  # acting user; falls back to the session id
    product_id: Optional[str] = None
    product_category: Optional[str] = None
    search_query: Optional[str] = None
    duration: Optional[float] = None
    screen_name: Optional[str] = None
    element_id: Optional[str] = None
    error_message: Optional[str] = None
    performance_metrics: Optional[PerformanceMetrics] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['type'] = self.type.value
        data['timestamp'] = _to_iso(self.timestamp)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        metrics = data.get('performance_metrics')
        return cls(
            id=data['id'],
            type=EventType(data['type']),
            timestamp=_from_iso(data['timestamp']),
            session_id=data['session_id'],
            user_id=data.get('user_id'),
            product_id=data.get('product_id'),
            product_category=data.get('product_category'),
            search_query=data.get('search_query'),
            duration=data.get('duration'),
            screen_name=data.get('screen_name'),
            element_id=data.get('element_id'),
            error_message=data.get('error_message'),
            performance_metrics=PerformanceMetrics(**metrics) if metrics else None,
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class DeviceInfo:
    user_agent: str = ""
    screen_size: str = ""
    viewport_size: str = ""
    language: str = ""


@dataclass
class Session:
    """A continuous period of user activity"""
    id: str
    start_time: dt.datetime
    last_activity: dt.datetime
    user_id: Optional[str] = None
    end_time: Optional[dt.datetime] = None
    events: List[Event] = field(default_factory=list)
    page_views: List[str] = field(default_factory=list)
    products_viewed: List[str] = field(default_factory=list)
    cart_interactions: int = 0
    purchases: int = 0
    total_scroll_depth: float = 0.0
    total_time_spent: float = 0.0
    device_info: DeviceInfo = field(default_factory=DeviceInfo)

    @property
    def is_closed(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'start_time': _to_iso(self.start_time),
            'end_time': _to_iso(self.end_time),
            'last_activity': _to_iso(self.last_activity),
            'events': [event.to_dict() for event in self.events],
            'page_views': list(self.page_views),
            'products_viewed': list(self.products_viewed),
            'cart_interactions': self.cart_interactions,
            'purchases': self.purchases,
            'total_scroll_depth': self.total_scroll_depth,
            'total_time_spent': self.total_time_spent,
            'device_info': asdict(self.device_info),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            id=data['id'],
            user_id=data.get('user_id'),
            start_time=_from_iso(data['start_time']),
            end_time=_from_iso(data.get('end_time')),
            last_activity=_from_iso(data['last_activity']),
            events=[Event.from_dict(e) for e in data.get('events', [])],
            page_views=list(data.get('page_views', [])),
            products_viewed=list(data.get('products_viewed', [])),
            cart_interactions=int(data.get('cart_interactions', 0)),
            purchases=int(data.get('purchases', 0)),
            total_scroll_depth=float(data.get('total_scroll_depth', 0.0)),
            total_time_spent=float(data.get('total_time_spent', 0.0)),
            device_info=DeviceInfo(**(data.get('device_info') or {})),
        )


@dataclass
class Preference:
    """Weighted-average rating signal for a (user, product) pair"""
    user_id: str
    product_id: str
    rating: float  # 1-5 scale
    interaction_type: EventType
    timestamp: dt.datetime
    weight: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'product_id': self.product_id,
            'rating': self.rating,
            'interaction_type': self.interaction_type.value,
            'timestamp': _to_iso(self.timestamp),
            'weight': self.weight,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Preference":
        return cls(
            user_id=data['user_id'],
            product_id=data['product_id'],
            rating=float(data['rating']),
            interaction_type=EventType(data['interaction_type']),
            timestamp=_from_iso(data['timestamp']),
            weight=float(data['weight']),
        )


@dataclass
class RecommendationScore:
    product_id: str
    score: float
    algorithm: Algorithm
    confidence: float  # 0-1
    reasoning: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'score': float(self.score),
            'algorithm': self.algorithm.value,
            'confidence': float(self.confidence),
            'reasoning': list(self.reasoning),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecommendationScore":
        return cls(
            product_id=data['product_id'],
            score=float(data['score']),
            algorithm=Algorithm(data['algorithm']),
            confidence=float(data['confidence']),
            reasoning=list(data.get('reasoning', [])),
        )


@dataclass
class MLPrediction:
    product_id: str
    purchase_probability: float
    churn_risk: float
    lifetime_value: float
    next_purchase_time_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UserBehavior:
    """Aggregate behavior statistics feeding the predictive heuristics"""
    avg_rating: float = 0.0
    total_interactions: int = 0
    purchase_rate: float = 0.0
    avg_session_duration: float = 0.0
    category_diversity: int = 0


@dataclass
class ProductInfo:
    product_id: str
    category: Optional[str] = None
    price: Optional[float] = None
    vendor: Optional[str] = None
    degenerate: bool = False  # category fabricated by the hash fallback


@dataclass
class AnalyticsSummary:
    total_sessions: int = 0
    total_events: int = 0
    average_session_duration: float = 0.0
    most_viewed_categories: List[Dict[str, Any]] = field(default_factory=list)
    most_interacted_products: List[Dict[str, Any]] = field(default_factory=list)
    conversion_rate: float = 0.0
    cart_abandonment_rate: float = 0.0
    average_scroll_depth: float = 0.0
    average_time_spent: float = 0.0
    top_performing_screens: List[Dict[str, Any]] = field(default_factory=list)
    error_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EnhancedAnalyticsSummary(AnalyticsSummary):
    user_segments: List[Dict[str, Any]] = field(default_factory=list)
    product_affinity_groups: List[Dict[str, Any]] = field(default_factory=list)
    seasonal_trends: List[Dict[str, Any]] = field(default_factory=list)
    top_predictions: List[MLPrediction] = field(default_factory=list)
    churn_risk_users: List[str] = field(default_factory=list)
    high_value_users: List[str] = field(default_factory=list)
