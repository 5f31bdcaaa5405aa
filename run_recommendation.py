#!/usr/bin/env python3
"""
Command-line entry point for the behavior engine

Commands:
- api: run the API server
- replay: record a JSON list of events and print the analytics summary
- recommend: print recommendations for a user
- personalize: print the contextual product ranking for a user
- summary: print the analytics summary of the persisted state
- clear: wipe persisted state
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from typing import List

import uvicorn

from behavior_engine import BehaviorEngine
from models import Algorithm
from personalized_ranking import ranking_summary
from settings import load_config
from state_storage import StateStorage

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _open_engine() -> BehaviorEngine:
    config = load_config()
    return BehaviorEngine(
        config=config,
        storage=StateStorage(config.engine.state_db_path),
        use_timer=False,
    )


def run_api(host: str = "0.0.0.0", port: int = 8000):
    logger.info(f"Starting API server on {host}:{port}")
    logger.info(f"API Documentation: http://localhost:{port}/docs")
    logger.info(f"Health Check: http://localhost:{port}/health")

    try:
        uvicorn.run("recommendation_api:app", host=host, port=port)
    except Exception as e:
        logger.error(f"Error running API server: {e}", exc_info=True)
        sys.exit(1)


def replay_events(path: str, user_id: str | None = None) -> bool:
    """Record every event in a JSON file (a list of event objects)."""
    try:
        with open(path, encoding="utf-8") as f:
            events = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Cannot read events from {path}: {e}")
        return False

    if not isinstance(events, list):
        logger.error(f"{path} must contain a JSON list of events")
        return False

    with _open_engine() as engine:
        recorded = 0
        for i, event in enumerate(events):
            try:
                engine.record_event(event, user_id=user_id)
                recorded += 1
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping event #{i}: {e}")
        logger.info(f"Recorded {recorded}/{len(events)} events from {path}")
        print(json.dumps(engine.summarize().to_dict(), indent=2, default=str))
    return True


def get_recommendations_for_user(user_id: str, algorithm: str, limit: int) -> List:
    with _open_engine() as engine:
        try:
            recommendations = engine.recommend(user_id, algorithm=algorithm, limit=limit)
        except ValueError as e:
            logger.error(str(e))
            return []

    logger.info(f"Found {len(recommendations)} recommendations for user {user_id}:")
    for i, rec in enumerate(recommendations, 1):
        logger.info(
            f"{i}. Product {rec.product_id} - "
            f"Score: {rec.score:.2f}, "
            f"Confidence: {rec.confidence:.2f} - "
            f"Reason: {'; '.join(rec.reasoning)}"
        )
    return recommendations


def print_personalized(user_id: str, limit: int):
    with _open_engine() as engine:
        ranked = engine.personalize(user_id, limit=limit)

    output = {
        'recommendations': [
            {
                'product_id': r.product.product_id,
                'category': r.product.category,
                'score': r.score,
                'reasons': [reason.description for reason in r.reasons],
            }
            for r in ranked
        ],
        'summary': ranking_summary(ranked),
    }
    print(json.dumps(output, indent=2))


def print_summary():
    with _open_engine() as engine:
        print(json.dumps(engine.summarize().to_dict(), indent=2, default=str))


def clear_state():
    with _open_engine() as engine:
        engine.clear()
    logger.info("Persisted state cleared")


def main():
    parser = argparse.ArgumentParser(description="Behavioral analytics and recommendation engine")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    api_parser = subparsers.add_parser("api", help="Run the API server")
    api_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    api_parser.add_argument("--port", type=int, default=8000, help="Port")

    replay_parser = subparsers.add_parser("replay", help="Record events from a JSON file")
    replay_parser.add_argument("events_file", help="Path to a JSON list of events")
    replay_parser.add_argument("--user-id", default=None, help="Attribute all events to this user")

    recommend_parser = subparsers.add_parser("recommend", help="Get recommendations")
    recommend_parser.add_argument("user_id", help="User id")
    recommend_parser.add_argument("--algorithm", default=Algorithm.HYBRID.value,
                                  choices=[a.value for a in Algorithm], help="Recommendation algorithm")
    recommend_parser.add_argument("--limit", type=int, default=10, help="Number of recommendations")

    personalize_parser = subparsers.add_parser("personalize", help="Rank catalog products for a user")
    personalize_parser.add_argument("user_id", help="User id")
    personalize_parser.add_argument("--limit", type=int, default=10, help="Number of products")

    subparsers.add_parser("summary", help="Print the analytics summary")
    subparsers.add_parser("clear", help="Wipe persisted state")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == "api":
        run_api(args.host, args.port)
    elif args.command == "replay":
        success = replay_events(args.events_file, args.user_id)
        sys.exit(0 if success else 1)
    elif args.command == "recommend":
        get_recommendations_for_user(args.user_id, args.algorithm, args.limit)
    elif args.command == "personalize":
        print_personalized(args.user_id, args.limit)
    elif args.command == "summary":
        print_summary()
    elif args.command == "clear":
        clear_state()


if __name__ == "__main__":
    main()
