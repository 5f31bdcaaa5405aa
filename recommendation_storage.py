"""
recommendation_storage.py - Redis cache for computed recommendation lists

Key layout:
- recommendation:{algorithm}:{user_id} -> JSON array of RecommendationScore dicts
- recommendation_meta:{algorithm}:{user_id} -> metadata (generated_at, count, limit, model_version, ttl)

Entries expire after the configured TTL. The engine only serves an entry whose
model_version matches its current preference state.
"""
from __future__ import annotations
import json
import logging
import datetime as dt
from typing import Any, Dict, Iterable, List, Optional

import redis
from redis.connection import ConnectionPool

from models import Algorithm, RecommendationScore
from settings import RedisConfig, load_config

logger = logging.getLogger(__name__)


def _algorithm_name(algorithm) -> str:
    return algorithm.value if isinstance(algorithm, Algorithm) else str(algorithm)


class RecommendationStorage:
    """Store and fetch recommendation lists in Redis"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        decode_responses: bool = True,
        ttl_seconds: int = 3600,
        client: Optional[redis.Redis] = None,
    ):
        """
        Args:
            host: Redis host
            port: Redis port
            db: Redis database number (0-15)
            password: Redis password, if required
            decode_responses: return str instead of bytes
            ttl_seconds: expiry for every stored list
            client: pre-built client; skips pool creation when given
        """
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.ttl_seconds = ttl_seconds

        if client is not None:
            self.pool = None
            self.client = client
        else:
            self.pool = ConnectionPool(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=decode_responses,
                max_connections=50,
            )
            self.client = redis.Redis(connection_pool=self.pool)

    def _get_key(self, algorithm, user_id: str) -> str:
        return f"recommendation:{_algorithm_name(algorithm)}:{user_id}"

    def _get_meta_key(self, algorithm, user_id: str) -> str:
        return f"recommendation_meta:{_algorithm_name(algorithm)}:{user_id}"

    def store_recommendations(
        self,
        user_id: str,
        algorithm,
        recommendations: List[RecommendationScore],
        overwrite: bool = True,
        limit: Optional[int] = None,
        model_version: Optional[str] = None,
    ) -> bool:
        """
        Args:
            limit: the limit the list was computed with
            model_version: preference-state version the list was computed from

        Returns:
            True on success, False if skipped or on error
        """
        try:
            key = self._get_key(algorithm, user_id)
            meta_key = self._get_meta_key(algorithm, user_id)

            if not overwrite and self.client.exists(key):
                return False

            payload = [rec.to_dict() for rec in recommendations]
            self.client.setex(key, self.ttl_seconds, json.dumps(payload, ensure_ascii=False))

            metadata = {
                'user_id': user_id,
                'algorithm': _algorithm_name(algorithm),
                'count': len(recommendations),
                'limit': limit if limit is not None else len(recommendations),
                'generated_at': dt.datetime.now(dt.timezone.utc).isoformat(),
                'ttl_seconds': self.ttl_seconds,
                'model_version': model_version,
            }
            self.client.setex(meta_key, self.ttl_seconds, json.dumps(metadata, ensure_ascii=False))

            logger.debug(f"Cached {len(recommendations)} {_algorithm_name(algorithm)} recommendations for user {user_id}")
            return True

        except (redis.RedisError, TypeError, ValueError) as e:
            logger.error(f"Error storing recommendations for user {user_id}: {e}", exc_info=True)
            return False

    def get_recommendations(self, user_id: str, algorithm) -> Optional[List[RecommendationScore]]:
        """
        Returns:
            the cached list, or None on a miss or error
        """
        try:
            data = self.client.get(self._get_key(algorithm, user_id))
            if data is None:
                return None
            return [RecommendationScore.from_dict(item) for item in json.loads(data)]

        except (redis.RedisError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Error retrieving recommendations for user {user_id}: {e}", exc_info=True)
            return None

    def get_metadata(self, user_id: str, algorithm) -> Optional[Dict[str, Any]]:
        try:
            data = self.client.get(self._get_meta_key(algorithm, user_id))
            if data is None:
                return None
            return json.loads(data)

        except (redis.RedisError, json.JSONDecodeError, TypeError) as e:
            logger.error(f"Error retrieving metadata for user {user_id}: {e}", exc_info=True)
            return None

    def exists(self, user_id: str, algorithm) -> bool:
        try:
            return self.client.exists(self._get_key(algorithm, user_id)) > 0
        except redis.RedisError as e:
            logger.warning(f"Error checking existence for user {user_id}: {e}")
            return False

    def delete(self, user_id: str, algorithms: Optional[Iterable] = None) -> bool:
        """Drop cached lists for a user, for every algorithm unless narrowed"""
        algorithms = list(algorithms) if algorithms is not None else list(Algorithm)
        try:
            keys = []
            for algorithm in algorithms:
                keys.append(self._get_key(algorithm, user_id))
                keys.append(self._get_meta_key(algorithm, user_id))
            self.client.delete(*keys)
            logger.debug(f"Invalidated cached recommendations for user {user_id}")
            return True
        except redis.RedisError as e:
            logger.error(f"Error deleting recommendations for user {user_id}: {e}", exc_info=True)
            return False

    def clear(self) -> int:
        """Delete every cached list and metadata entry. Returns the number of keys removed."""
        try:
            removed = 0
            for pattern in ("recommendation:*", "recommendation_meta:*"):
                keys = list(self.client.scan_iter(match=pattern))
                if keys:
                    removed += self.client.delete(*keys)
            logger.info(f"Cleared {removed} cached recommendation keys")
            return removed
        except redis.RedisError as e:
            logger.error(f"Error clearing recommendation cache: {e}", exc_info=True)
            return 0

    def get_stats(self) -> Dict[str, Any]:
        try:
            keys = list(self.client.scan_iter(match="recommendation:*"))
            memory_info = self.client.info('memory')
            return {
                'total_recommendations': len(keys),
                'memory_usage_mb': round(memory_info['used_memory'] / 1024 / 1024, 2),
            }
        except redis.RedisError as e:
            logger.error(f"Error getting Redis stats: {e}", exc_info=True)
            return {'total_recommendations': 0, 'memory_usage_mb': 0}

    def test_connection(self) -> bool:
        try:
            self.client.ping()
            logger.info("Redis connection test successful")
            return True
        except redis.RedisError as e:
            logger.error(f"Redis connection test failed: {e}")
            return False

    def close(self):
        try:
            self.client.close()
            logger.debug("Redis connection closed")
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")


def get_storage(redis_config: Optional[RedisConfig] = None) -> RecommendationStorage:
    """Build a RecommendationStorage from configuration"""
    redis_config = redis_config or load_config().redis
    return RecommendationStorage(
        host=redis_config.host,
        port=redis_config.port,
        db=redis_config.db,
        password=redis_config.password,
        ttl_seconds=redis_config.ttl_seconds,
    )
