"""
Behavior engine facade

Wires the session manager, preference model, recommenders, heuristics and
analytics into one object hosts talk to. Every write goes through ``record``;
everything else is a read path over the same in-memory state.

Persistence is write-behind: after a mutation the engine snapshots its state
under the session lock and hands the serialized documents to a single
background worker that writes them to DuckDB.
"""
from __future__ import annotations
import datetime as dt
import logging
import uuid
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import duckdb

from models import (
    Algorithm,
    AnalyticsSummary,
    DeviceInfo,
    EnhancedAnalyticsSummary,
    Event,
    EventType,
    MLPrediction,
    Preference,
    ProductInfo,
    RecommendationScore,
    Session,
)
from settings import Config, load_config
from event_store import EventStore, SessionManager
from preference_model import PreferenceModel
from product_catalog import ProductCatalog, build_catalog
from collaborative_filtering import CollaborativeFiltering
from content_based_filtering import ContentBasedFiltering
from hybrid_recommender import HybridRecommender
from predictive_heuristics import PredictiveHeuristics
from personalized_ranking import (
    MAX_RESULTS,
    CustomerPreferences,
    OrderSummary,
    PersonalizedProduct,
    PersonalizedRanker,
    ShoppingContext,
)
from recommendation_storage import RecommendationStorage
from state_storage import (
    CURRENT_SESSION_KEY,
    EVENTS_KEY,
    PREFERENCES_KEY,
    SESSIONS_KEY,
    StateStorage,
)
import analytics

logger = logging.getLogger(__name__)

# Event fields a caller may pass to record()
EVENT_FIELDS = (
    'product_id', 'product_category', 'search_query', 'duration', 'screen_name',
    'element_id', 'error_message', 'performance_metrics', 'metadata',
)

RECENTLY_VIEWED_LIMIT = 10
POPULAR_LIMIT = 10


class BehaviorEngine:
    """Tracks interactions and answers recommendation, prediction and analytics queries"""

    def __init__(
        self,
        config: Optional[Config] = None,
        catalog: Optional[ProductCatalog] = None,
        storage: Optional[StateStorage] = None,
        cache: Optional[RecommendationStorage] = None,
        user_id: Optional[str] = None,
        device_info: Optional[DeviceInfo] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
        use_timer: bool = True,
        autosave: bool = True,
    ):
        """
        Args:
            config: engine configuration; loaded from the environment if None
            catalog: product metadata source; built from config if None
            storage: persisted state store; state is memory-only if None
            cache: Redis recommendation cache; disabled if None
            user_id: identity for recorded events; the session id is used if None
            device_info: device context captured on each new session
            clock: time source (injectable for tests)
            use_timer: run the background inactivity timer
            autosave: write state to storage after every mutation
        """
        self.config = config or load_config()
        if catalog is None:
            catalog = build_catalog(self.config.catalog.db_url, self.config.catalog.fallback)
        self.catalog = catalog
        self.storage = storage
        self.cache = cache
        self.user_id = user_id
        self.autosave = autosave and self.config.engine.autosave and storage is not None

        self.store = EventStore()
        self.session_manager = SessionManager(
            self.store,
            timeout_seconds=self.config.engine.session_timeout_seconds,
            device_info=device_info,
            clock=clock,
            use_timer=use_timer,
        )
        self.preferences = PreferenceModel()

        self.collaborative = CollaborativeFiltering(self.preferences)
        self.content = ContentBasedFiltering(self.preferences, self.catalog)
        self.hybrid = HybridRecommender(self.collaborative, self.content)
        self.heuristics = PredictiveHeuristics(self.preferences, self.content, self.events_for_user)

        # Cached lists carry the version they were computed from
        self._model_version = uuid.uuid4().hex

        self._executor: Optional[ThreadPoolExecutor] = None
        self._last_flush: Optional[Future] = None
        if storage is not None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="engine-flush")

        # A timer-driven close happens outside record(); persist it too.
        self.session_manager.add_close_listener(self._on_session_closed)

        if storage is not None:
            self.load()

    # ------------------------------------------------------------------
    # recording

    def record(self, event_type: EventType | str, user_id: Optional[str] = None, **fields: Any) -> Event:
        """
        Record one interaction.

        Args:
            event_type: an EventType or its string value
            user_id: identity for this event; defaults to the engine's user
            **fields: any of EVENT_FIELDS

        Raises:
            ValueError: for an unknown event type or field
        """
        unknown = set(fields) - set(EVENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown event fields: {', '.join(sorted(unknown))}")

        user_id = user_id or self.user_id
        with self.session_manager.lock:
            event = self.session_manager.record(event_type, user_id=user_id, **fields)
            self.catalog.observe(event.product_id, event.product_category)

            updated = self.preferences.update_preference(event.user_id, event)
            if updated is not None:
                self._bump_model_version()

            self._schedule_flush()
        return event

    def record_event(self, event: Event | Dict[str, Any], user_id: Optional[str] = None) -> Event:
        """Record an event-like dict or Event; its id, timestamp and session id are re-stamped."""
        if isinstance(event, Event):
            data = event.to_dict()
        else:
            data = dict(event)
        event_type = data.pop('type', None)
        if event_type is None:
            raise ValueError("Event is missing a type")
        fields = {k: v for k, v in data.items() if k in EVENT_FIELDS and v is not None}
        return self.record(event_type, user_id=user_id or data.get('user_id'), **fields)

    def track_product_view(self, product_id: str, category: Optional[str] = None) -> Event:
        return self.record(EventType.PRODUCT_VIEW, product_id=product_id, product_category=category)

    def track_product_click(self, product_id: str, category: Optional[str] = None) -> Event:
        return self.record(EventType.PRODUCT_CLICK, product_id=product_id, product_category=category)

    def track_add_to_cart(self, product_id: str, category: Optional[str] = None) -> Event:
        return self.record(EventType.ADD_TO_CART, product_id=product_id, product_category=category)

    def track_remove_from_cart(self, product_id: str, category: Optional[str] = None) -> Event:
        return self.record(EventType.REMOVE_FROM_CART, product_id=product_id, product_category=category)

    def track_purchase(self, products: Sequence, total_amount: float) -> List[Event]:
        """One purchase event per product. ``products`` holds ids or (id, category) pairs."""
        events = []
        for product in products:
            product_id, category = product if isinstance(product, tuple) else (product, None)
            events.append(self.record(
                EventType.PURCHASE,
                product_id=product_id,
                product_category=category,
                metadata={'total_amount': total_amount},
            ))
        return events

    def track_search(self, query: str, results_count: int) -> Event:
        return self.record(EventType.SEARCH, search_query=query, metadata={'results_count': results_count})

    def track_category_browse(self, category: str) -> Event:
        return self.record(EventType.CATEGORY_BROWSE, product_category=category)

    def track_screen_view(self, screen_name: str) -> Event:
        return self.record(EventType.SCREEN_VIEW, screen_name=screen_name)

    def track_page_view(self, page: str) -> None:
        self.session_manager.track_page_view(page)
        self._schedule_flush()

    def track_button_click(self, button_id: str, button_text: Optional[str] = None,
                           context: Optional[str] = None) -> Event:
        return self.record(EventType.BUTTON_CLICK, element_id=button_id,
                           metadata={'button_text': button_text, 'context': context})

    def track_form_interaction(self, form_id: str, field_name: str, action: str) -> Event:
        if action not in ('focus', 'blur', 'change', 'submit'):
            raise ValueError(f"Unknown form action: {action}")
        return self.record(EventType.FORM_INTERACTION, element_id=form_id,
                           metadata={'field_name': field_name, 'action': action})

    def track_error(self, error_message: str, error_type: str, context: Optional[str] = None) -> Event:
        return self.record(EventType.ERROR, error_message=error_message,
                           metadata={'error_type': error_type, 'context': context})

    def track_performance(self, load_time: Optional[float] = None, render_time: Optional[float] = None,
                          interaction_time: Optional[float] = None) -> Event:
        return self.record(EventType.PERFORMANCE, performance_metrics={
            'load_time': load_time,
            'render_time': render_time,
            'interaction_time': interaction_time,
        })

    def track_scroll(self, scroll_depth: float, direction: str = "down") -> Event:
        return self.record(EventType.SCROLL, metadata={'scroll_depth': scroll_depth, 'direction': direction})

    def track_time_spent(self, duration_ms: float) -> Event:
        return self.record(EventType.TIME_SPENT, duration=duration_ms, metadata={'interval': 'minute'})

    # ------------------------------------------------------------------
    # sessions

    def end_session(self) -> Optional[Session]:
        return self.session_manager.end_session()

    def current_session(self) -> Optional[Session]:
        with self.session_manager.lock:
            self.session_manager.check_timeout()
            return self.session_manager.current_session()

    @property
    def is_tracking(self) -> bool:
        return self.session_manager.current_session() is not None

    @property
    def sessions(self) -> List[Session]:
        return self.session_manager.sessions

    @property
    def events(self) -> List[Event]:
        return list(self.store.events)

    def events_for_user(self, user_id: str) -> List[Event]:
        """Events the user performed, in any session."""
        owners = {s.id: s.user_id or s.id for s in self.session_manager.all_sessions()}
        return [e for e in self.store.events if (e.user_id or owners.get(e.session_id)) == user_id]

    # ------------------------------------------------------------------
    # queries

    def recommend(self, user_id: str, algorithm: Algorithm | str = Algorithm.HYBRID,
                  limit: Optional[int] = None) -> List[RecommendationScore]:
        """
        Ranked recommendations for a user.

        Raises:
            ValueError: for an unknown algorithm
        """
        try:
            algorithm = Algorithm(algorithm)
        except ValueError:
            raise ValueError(f"Unknown algorithm: {algorithm}") from None
        if limit is None:
            limit = self.config.engine.default_limit

        if self.cache is not None:
            metadata = self.cache.get_metadata(user_id, algorithm)
            if (metadata and metadata.get('model_version') == self._model_version
                    and metadata.get('limit', 0) >= limit):
                cached = self.cache.get_recommendations(user_id, algorithm)
                if cached is not None:
                    logger.debug(f"Cache hit for {algorithm.value} recommendations of user {user_id}")
                    return cached[:limit]

        with self.session_manager.lock:
            model_version = self._model_version
            if algorithm == Algorithm.COLLABORATIVE:
                recommendations = self.collaborative.get_user_recommendations(user_id, limit)
            elif algorithm == Algorithm.CONTENT:
                recommendations = self.content.get_user_recommendations(user_id, limit)
            else:
                recommendations = self.hybrid.get_recommendations(user_id, limit)

        if self.cache is not None:
            self.cache.store_recommendations(user_id, algorithm, recommendations, limit=limit,
                                             model_version=model_version)
        return recommendations

    def personalize(
        self,
        user_id: Optional[str] = None,
        candidates: Optional[Iterable[ProductInfo]] = None,
        orders: Optional[Sequence[OrderSummary]] = None,
        limit: Optional[int] = MAX_RESULTS,
    ) -> List[PersonalizedProduct]:
        """
        Rank products against the user's cart, browsing and purchase history.

        Args:
            user_id: defaults to the engine's user, then the current session id
            candidates: products to rank; every catalog product if None
            orders: purchase history; derived from recorded purchases if None
            limit: maximum number of results, or None for all
        """
        with self.session_manager.lock:
            if user_id is None:
                session = self.session_manager.current_session()
                user_id = self.user_id or (session.id if session is not None else None)
            events = self.events_for_user(user_id) if user_id else []
            context = self._shopping_context(events)
            if orders is None:
                orders = self._purchase_history(events)
            if candidates is None:
                candidates = self.catalog.products()
            now = self.session_manager.now()

        preferences = CustomerPreferences.from_purchase_history(orders, now=now)
        ranked = PersonalizedRanker(preferences).rank(candidates, context, limit=limit)
        logger.debug(f"Personalized {len(ranked)} products for user {user_id}")
        return ranked

    def _product_info(self, product_id: str) -> ProductInfo:
        return self.catalog.get(product_id) or ProductInfo(product_id=product_id)

    def _shopping_context(self, user_events: Sequence[Event]) -> ShoppingContext:
        cart: Dict[str, None] = {}
        viewed: List[str] = []
        purchased: Dict[str, None] = {}
        for event in user_events:
            if not event.product_id:
                continue
            if event.type == EventType.ADD_TO_CART:
                cart[event.product_id] = None
            elif event.type == EventType.REMOVE_FROM_CART:
                cart.pop(event.product_id, None)
            elif event.type == EventType.PURCHASE:
                cart.pop(event.product_id, None)
                purchased[event.product_id] = None
            elif event.type == EventType.PRODUCT_VIEW:
                viewed.append(event.product_id)

        # latest view first
        recently_viewed = list(dict.fromkeys(reversed(viewed)))[:RECENTLY_VIEWED_LIMIT]
        counts = Counter(e.product_id for e in self.store.events if e.product_id)
        return ShoppingContext(
            cart=[self._product_info(pid) for pid in cart],
            recently_viewed=recently_viewed,
            favorite_products=[self._product_info(pid) for pid in purchased],
            popular=[pid for pid, _ in counts.most_common(POPULAR_LIMIT)],
        )

    def _purchase_history(self, user_events: Sequence[Event]) -> List[OrderSummary]:
        """One order per session with purchases; the total comes from the purchase metadata."""
        orders: Dict[str, OrderSummary] = {}
        for event in user_events:
            if event.type != EventType.PURCHASE or not event.product_id:
                continue
            order = orders.get(event.session_id)
            if order is None:
                order = orders[event.session_id] = OrderSummary(
                    total_price=float(event.metadata.get('total_amount') or 0.0),
                    created_at=event.timestamp,
                )
            order.products.append(self._product_info(event.product_id))
        return list(orders.values())

    def predict(self, user_id: str, limit: int = 10) -> List[MLPrediction]:
        with self.session_manager.lock:
            return self.heuristics.predict(user_id, limit)

    def summarize(self) -> AnalyticsSummary:
        with self.session_manager.lock:
            return analytics.summarize(self.session_manager.sessions, self.store.events)

    def enhanced_summary(self, user_id: Optional[str] = None) -> EnhancedAnalyticsSummary:
        with self.session_manager.lock:
            return analytics.enhanced_summary(
                self.session_manager.sessions,
                self.store.events,
                self.heuristics,
                prediction_user_id=user_id or self.user_id,
            )

    def export_events(self, path: str) -> str:
        with self.session_manager.lock:
            events = self.store.events
        return analytics.export_events(events, path)

    # ------------------------------------------------------------------
    # persistence

    def _snapshot(self) -> Dict[str, Any]:
        with self.session_manager.lock:
            current = self.session_manager.current_session()
            return {
                SESSIONS_KEY: [s.to_dict() for s in self.session_manager.sessions],
                EVENTS_KEY: [e.to_dict() for e in self.store.events],
                PREFERENCES_KEY: [p.to_dict() for p in self.preferences.all()],
                CURRENT_SESSION_KEY: current.to_dict() if current is not None else None,
            }

    def _write(self, documents: Dict[str, Any]) -> None:
        try:
            self.storage.save_many(documents)
        except (duckdb.Error, RuntimeError, OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist engine state: {e}", exc_info=True)

    def _bump_model_version(self) -> None:
        """Mark every cached recommendation list stale."""
        self._model_version = uuid.uuid4().hex

    def _schedule_flush(self) -> None:
        if self.autosave:
            self.flush(wait=False)

    def _on_session_closed(self, session: Session) -> None:
        self._schedule_flush()

    def flush(self, wait: bool = True) -> None:
        """Snapshot state and hand it to the writer. ``wait`` blocks until written."""
        if self._executor is None:
            return
        with self.session_manager.lock:
            documents = self._snapshot()
            self._last_flush = self._executor.submit(self._write, documents)
        if wait:
            self._last_flush.result()

    def _load_records(self, key: str, factory: Callable[[Dict[str, Any]], Any]) -> List[Any]:
        document = self.storage.load(key)
        if document is None:
            return []
        try:
            return [factory(item) for item in document]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Discarding persisted {key}: {e}")
            return []

    def load(self) -> None:
        """Replace in-memory state with what storage holds."""
        if self.storage is None:
            return

        sessions = self._load_records(SESSIONS_KEY, Session.from_dict)
        events = self._load_records(EVENTS_KEY, Event.from_dict)
        preferences = self._load_records(PREFERENCES_KEY, Preference.from_dict)

        current = None
        document = self.storage.load(CURRENT_SESSION_KEY)
        if document is not None:
            try:
                current = Session.from_dict(document)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Discarding persisted {CURRENT_SESSION_KEY}: {e}")

        with self.session_manager.lock:
            self.store.replace(events)
            self.preferences.replace(preferences)
            for event in events:
                self.catalog.observe(event.product_id, event.product_category)
            self.session_manager.restore(sessions, current)
            self._bump_model_version()

        logger.info(
            f"Loaded {len(sessions)} sessions, {len(events)} events and {len(preferences)} preferences"
        )

    def clear(self) -> None:
        """Wipe in-memory, persisted and cached state."""
        with self.session_manager.lock:
            self.session_manager.reset()
            self.store.clear()
            self.preferences.reset()
            self.catalog.clear_observed()
            self._bump_model_version()

        if self._last_flush is not None:
            self._last_flush.result()
        if self.storage is not None:
            self.storage.clear()
        if self.cache is not None:
            self.cache.clear()
        logger.info("Engine state cleared")

    def close(self) -> None:
        """Stop the timer, write pending state and release storage. The open session is kept for resume."""
        self.session_manager.shutdown()
        if self._executor is not None:
            if self.autosave:
                self.flush(wait=True)
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.storage is not None:
            self.storage.close()
        if self.cache is not None:
            self.cache.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
