"""
Redis connection and stream management.

Provides the Redis client used by Celery tasks to publish ingestion events.
"""

from typing import Optional
from redis import Redis
from marketsim.core.config import settings

# Synchronous Redis client (for Celery tasks)
redis_client: Optional[Redis] = None


def get_redis() -> Redis:
    """Get synchronous Redis client."""
    global redis_client
    if redis_client is None:
        redis_client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return redis_client


# Redis Stream Names
class StreamNames:
    """Redis Stream names for ingestion events."""

    MARKET_BARS = "market-bars"
    ALERTS = "alerts"
