"""
Event store and session lifecycle

The event store is an append-only log of every recorded interaction. The
session manager owns the single "current" session: it opens one lazily on the
first event, folds each event into the session aggregates, and closes it on
an explicit end or after the inactivity window elapses.

Session states:
    NoSession -> Active   first event recorded
    Active    -> Closed   end_session() or inactivity timeout
    Closed is terminal; the next event opens a fresh session.
"""
from __future__ import annotations
import datetime as dt
import logging
import threading
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from models import DeviceInfo, Event, EventType, PerformanceMetrics, Session

logger = logging.getLogger(__name__)

SESSION_TIMEOUT_SECONDS = 30 * 60

EventListener = Callable[[Session, Event], None]
SessionListener = Callable[[Session], None]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _millis(value: dt.datetime) -> int:
    return int(value.timestamp() * 1000)


class EventStore:
    """Append-only ordered log of interaction events"""

    def __init__(self, events: Optional[Iterable[Event]] = None):
        self._events: List[Event] = list(events or [])

    def append(self, event: Event) -> None:
        self._events.append(event)

    @property
    def events(self) -> Tuple[Event, ...]:
        return tuple(self._events)

    def replace(self, events: Iterable[Event]) -> None:
        """Swap in a persisted log (load path only)."""
        self._events = list(events)

    def clear(self) -> None:
        self._events = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(tuple(self._events))


class SessionManager:
    """Owns the current session, its aggregates and its inactivity timer"""

    def __init__(
        self,
        store: EventStore,
        timeout_seconds: float = SESSION_TIMEOUT_SECONDS,
        device_info: Optional[DeviceInfo] = None,
        clock: Optional[Callable[[], dt.datetime]] = None,
        use_timer: bool = True,
    ):
        """
        Args:
            store: global event log every recorded event is appended to
            timeout_seconds: inactivity window after which the session closes
            device_info: device context captured on each new session
            clock: time source (injectable for tests)
            use_timer: if False only the lazy staleness check closes sessions
        """
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.device_info = device_info or DeviceInfo()
        self._clock = clock or _utcnow
        self.use_timer = use_timer

        self._lock = threading.RLock()
        self._current: Optional[Session] = None
        self._sessions: List[Session] = []
        self._timer: Optional[threading.Timer] = None
        self._timer_generation = 0
        self._event_listeners: List[EventListener] = []
        self._close_listeners: List[SessionListener] = []

    # ------------------------------------------------------------------
    # listeners

    def add_event_listener(self, listener: EventListener) -> None:
        self._event_listeners.append(listener)

    def add_close_listener(self, listener: SessionListener) -> None:
        self._close_listeners.append(listener)

    # ------------------------------------------------------------------
    # state access

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def now(self) -> dt.datetime:
        return self._clock()

    def current_session(self) -> Optional[Session]:
        return self._current

    @property
    def sessions(self) -> List[Session]:
        """Closed sessions, oldest first"""
        return list(self._sessions)

    def all_sessions(self) -> List[Session]:
        sessions = list(self._sessions)
        if self._current is not None:
            sessions.append(self._current)
        return sessions

    # ------------------------------------------------------------------
    # mutation entry points

    def record(
        self,
        event_type: EventType | str,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
        product_category: Optional[str] = None,
        search_query: Optional[str] = None,
        duration: Optional[float] = None,
        screen_name: Optional[str] = None,
        element_id: Optional[str] = None,
        error_message: Optional[str] = None,
        performance_metrics: Optional[PerformanceMetrics | Dict] = None,
        metadata: Optional[Dict] = None,
    ) -> Event:
        """Record an event into the current session, opening one if needed."""
        event_type = EventType(event_type)
        if isinstance(performance_metrics, dict):
            performance_metrics = PerformanceMetrics(**performance_metrics)

        with self._lock:
            now = self._clock()
            self._expire_if_stale(now)

            session = self._current
            if session is None:
                session = self._open_session(now, user_id)

            event = Event(
                id=f"event-{_millis(now)}-{uuid.uuid4().hex[:9]}",
                type=event_type,
                timestamp=now,
                session_id=session.id,
                user_id=user_id or session.user_id or session.id,
                product_id=product_id,
                product_category=product_category,
                search_query=search_query,
                duration=duration,
                screen_name=screen_name,
                element_id=element_id,
                error_message=error_message,
                performance_metrics=performance_metrics,
                metadata=dict(metadata or {}),
            )

            self._apply(session, event)
            self.store.append(event)

            for listener in self._event_listeners:
                listener(session, event)

            # Reschedule only once the event is fully processed.
            self._schedule_timeout()
            logger.debug(f"Recorded {event.type.value} in {session.id}")
            return event

    def track_page_view(self, page: str) -> None:
        """Add a page to the current session's page views without logging an event."""
        with self._lock:
            if self._current is not None and page not in self._current.page_views:
                self._current.page_views.append(page)

    def end_session(self) -> Optional[Session]:
        """Close the current session explicitly. Returns the closed session."""
        with self._lock:
            if self._current is None:
                return None
            return self._close(self._clock())

    def check_timeout(self, now: Optional[dt.datetime] = None) -> Optional[Session]:
        """Close the current session if it has been idle past the window."""
        with self._lock:
            return self._expire_if_stale(now or self._clock())

    def restore(self, sessions: Iterable[Session], current: Optional[Session] = None) -> None:
        """Load persisted history and optionally resume an open session."""
        with self._lock:
            self._cancel_timer()
            self._sessions = [s for s in sessions if s.end_time is not None]
            self._current = None
            if current is not None and current.end_time is None:
                self._current = current
                if self._expire_if_stale(self._clock()) is None:
                    self._schedule_timeout()
                    logger.info(f"Resumed session {current.id}")

    def reset(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._current = None
            self._sessions = []

    def shutdown(self) -> None:
        """Stop the timer without closing the session."""
        with self._lock:
            self._cancel_timer()

    # ------------------------------------------------------------------
    # internals

    def _open_session(self, now: dt.datetime, user_id: Optional[str]) -> Session:
        session = Session(
            id=f"session-{_millis(now)}-{uuid.uuid4().hex[:6]}",
            user_id=user_id,
            start_time=now,
            last_activity=now,
            device_info=DeviceInfo(**vars(self.device_info)),
        )
        self._current = session
        logger.info(f"Started session {session.id}")
        return session

    def _apply(self, session: Session, event: Event) -> None:
        session.events.append(event)
        session.last_activity = event.timestamp

        if event.type == EventType.PRODUCT_VIEW:
            if event.product_id and event.product_id not in session.products_viewed:
                session.products_viewed.append(event.product_id)
        elif event.type in (EventType.ADD_TO_CART, EventType.REMOVE_FROM_CART):
            session.cart_interactions += 1
        elif event.type == EventType.PURCHASE:
            session.purchases += 1
        elif event.type == EventType.TIME_SPENT:
            if event.duration is not None:
                session.total_time_spent = event.duration
        elif event.type == EventType.SCROLL:
            depth = event.metadata.get('scroll_depth') or 0
            session.total_scroll_depth = max(session.total_scroll_depth, float(depth))
        elif event.type == EventType.SCREEN_VIEW:
            if event.screen_name and event.screen_name not in session.page_views:
                session.page_views.append(event.screen_name)

    def _expire_if_stale(self, now: dt.datetime) -> Optional[Session]:
        session = self._current
        if session is None:
            return None
        idle = (now - session.last_activity).total_seconds()
        if idle < self.timeout_seconds:
            return None
        logger.info(f"Session {session.id} expired after {idle:.0f}s of inactivity")
        expired_at = session.last_activity + dt.timedelta(seconds=self.timeout_seconds)
        return self._close(expired_at)

    def _close(self, end_time: dt.datetime) -> Session:
        self._cancel_timer()
        session = self._current
        session.end_time = end_time
        self._sessions.append(session)
        self._current = None
        logger.info(f"Closed session {session.id} ({len(session.events)} events)")
        for listener in self._close_listeners:
            listener(session)
        return session

    def _schedule_timeout(self) -> None:
        self._cancel_timer()
        if not self.use_timer or self._current is None:
            return
        generation = self._timer_generation
        timer = threading.Timer(self.timeout_seconds, self._on_timer, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        self._timer_generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            # A record() or end_session() that won the lock bumped the generation.
            if generation != self._timer_generation or self._current is None:
                return
            logger.info(f"Session {self._current.id} timed out")
            self._close(self._clock())
