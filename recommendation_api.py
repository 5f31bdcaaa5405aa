"""
HTTP API for the behavior engine

Endpoints for recording interactions, inspecting the current session and
querying recommendations, personalized rankings, predictions and analytics.
"""
from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from behavior_engine import BehaviorEngine
from models import Algorithm, Session
from personalized_ranking import filter_by_brand, filter_by_category, filter_by_price_range
from recommendation_storage import get_storage
from settings import load_config
from state_storage import StateStorage

logger = logging.getLogger(__name__)


# Pydantic models
class EventRequest(BaseModel):
    type: str
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    product_category: Optional[str] = None
    search_query: Optional[str] = None
    duration: Optional[float] = None
    screen_name: Optional[str] = None
    element_id: Optional[str] = None
    error_message: Optional[str] = None
    performance_metrics: Optional[Dict[str, Optional[float]]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EventResponse(BaseModel):
    id: str
    type: str
    timestamp: datetime
    session_id: str
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    product_category: Optional[str] = None


class SessionResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    last_activity: datetime
    event_count: int
    page_views: List[str]
    products_viewed: List[str]
    cart_interactions: int
    purchases: int
    total_scroll_depth: float
    total_time_spent: float
    device_info: Dict[str, str]


class RecommendationResponse(BaseModel):
    product_id: str
    score: float
    algorithm: str
    confidence: float
    reasoning: List[str]
    product_category: Optional[str] = None


class PredictionResponse(BaseModel):
    product_id: str
    purchase_probability: float
    churn_risk: float
    lifetime_value: float
    next_purchase_time_days: Optional[int] = None


class ReasonResponse(BaseModel):
    type: str
    confidence: float
    description: str


class PersonalizedResponse(BaseModel):
    product_id: str
    category: Optional[str] = None
    price: Optional[float] = None
    vendor: Optional[str] = None
    score: float
    reasons: List[ReasonResponse]


class SummaryResponse(BaseModel):
    total_sessions: int
    total_events: int
    average_session_duration: float
    most_viewed_categories: List[Dict[str, Any]]
    most_interacted_products: List[Dict[str, Any]]
    conversion_rate: float
    cart_abandonment_rate: float
    average_scroll_depth: float
    average_time_spent: float
    top_performing_screens: List[Dict[str, Any]]
    error_rate: float


class EnhancedSummaryResponse(SummaryResponse):
    user_segments: List[Dict[str, Any]]
    product_affinity_groups: List[Dict[str, Any]]
    seasonal_trends: List[Dict[str, Any]]
    top_predictions: List[PredictionResponse]
    churn_risk_users: List[str]
    high_value_users: List[str]


class AppState:
    """Application state: the single engine instance"""
    def __init__(self):
        self.engine: Optional[BehaviorEngine] = None

    def build_engine(self) -> BehaviorEngine:
        config = load_config()
        storage = StateStorage(config.engine.state_db_path)

        cache = get_storage(config.redis)
        if cache.test_connection():
            logger.info("Redis connection established")
        else:
            logger.warning("Redis not available - recommendations will not be cached")
            cache.close()
            cache = None

        return BehaviorEngine(config=config, storage=storage, cache=cache)


app_state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting API initialization...")
    owns_engine = app_state.engine is None
    if owns_engine:
        app_state.engine = app_state.build_engine()

    yield

    logger.info("Shutting down API...")
    if owns_engine and app_state.engine is not None:
        app_state.engine.close()
        app_state.engine = None


app = FastAPI(
    title="Behavior Engine",
    description="Behavioral analytics and product recommendations",
    version="1.0.0",
    lifespan=lifespan,
)


def get_engine() -> BehaviorEngine:
    if app_state.engine is None:
        raise HTTPException(status_code=503, detail="Engine is not initialized")
    return app_state.engine


def _session_response(session: Session) -> SessionResponse:
    data = session.to_dict()
    data['event_count'] = len(session.events)
    data.pop('events')
    return SessionResponse(**data)


@app.get("/")
async def root():
    return {
        "message": "Behavior Engine",
        "version": "1.0.0",
        "status": "active",
    }


@app.get("/health")
async def health_check():
    engine = app_state.engine
    return {
        "status": "healthy",
        "engine_ready": engine is not None,
        "tracking": engine.is_tracking if engine else False,
        "events_recorded": len(engine.store) if engine else 0,
        "cache_enabled": engine.cache is not None if engine else False,
    }


@app.post("/events", response_model=EventResponse)
def record_event(request: EventRequest):
    engine = get_engine()
    try:
        event = engine.record_event(request.model_dump(exclude_none=True))
        return EventResponse(**event.to_dict())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error recording event: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error recording event: {str(e)}")


@app.post("/sessions/end", response_model=Optional[SessionResponse])
def end_session():
    session = get_engine().end_session()
    return _session_response(session) if session is not None else None


@app.get("/sessions/current", response_model=SessionResponse)
def current_session():
    session = get_engine().current_session()
    if session is None:
        raise HTTPException(status_code=404, detail="No active session")
    return _session_response(session)


@app.get("/recommendations/{user_id}", response_model=List[RecommendationResponse])
def get_user_recommendations(
    user_id: str,
    algorithm: str = Algorithm.HYBRID.value,
    limit: int = Query(10, ge=1, le=100),
):
    engine = get_engine()
    try:
        recommendations = engine.recommend(user_id, algorithm=algorithm, limit=limit)
        response = [
            RecommendationResponse(
                **rec.to_dict(),
                product_category=engine.catalog.category_of(rec.product_id),
            )
            for rec in recommendations
        ]
        logger.debug(f"Returned {len(response)} {algorithm} recommendations for user {user_id}")
        return response
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting recommendations for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error getting recommendations: {str(e)}")


@app.get("/predictions/{user_id}", response_model=List[PredictionResponse])
def get_user_predictions(user_id: str, limit: int = Query(10, ge=1, le=100)):
    engine = get_engine()
    try:
        return [PredictionResponse(**p.to_dict()) for p in engine.predict(user_id, limit)]
    except Exception as e:
        logger.error(f"Error getting predictions for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error getting predictions: {str(e)}")


@app.get("/personalized/{user_id}", response_model=List[PersonalizedResponse])
def get_personalized(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
):
    engine = get_engine()
    try:
        ranked = engine.personalize(user_id, limit=None)
        if category is not None:
            ranked = filter_by_category(ranked, category)
        if brand is not None:
            ranked = filter_by_brand(ranked, brand)
        if min_price is not None or max_price is not None:
            ranked = filter_by_price_range(
                ranked,
                min_price if min_price is not None else 0.0,
                max_price if max_price is not None else float("inf"),
            )
        return [
            PersonalizedResponse(
                product_id=r.product.product_id,
                category=r.product.category,
                price=r.product.price,
                vendor=r.product.vendor,
                score=r.score,
                reasons=[ReasonResponse(**vars(reason)) for reason in r.reasons],
            )
            for r in ranked[:limit]
        ]
    except Exception as e:
        logger.error(f"Error personalizing products for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error personalizing products: {str(e)}")


@app.get("/analytics/summary", response_model=SummaryResponse)
def get_summary():
    engine = get_engine()
    try:
        return SummaryResponse(**engine.summarize().to_dict())
    except Exception as e:
        logger.error(f"Error building analytics summary: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error building summary: {str(e)}")


@app.get("/analytics/enhanced", response_model=EnhancedSummaryResponse)
def get_enhanced_summary(user_id: Optional[str] = None):
    engine = get_engine()
    try:
        return EnhancedSummaryResponse(**engine.enhanced_summary(user_id).to_dict())
    except Exception as e:
        logger.error(f"Error building enhanced summary: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error building enhanced summary: {str(e)}")


@app.delete("/state")
def clear_state():
    get_engine().clear()
    return {"status": "cleared"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
