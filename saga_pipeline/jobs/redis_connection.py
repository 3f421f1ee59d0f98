"""Redis broker connection with bounded exponential reconnect backoff."""

import logging

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from saga_pipeline.config import Settings

logger = logging.getLogger(__name__)


def build_retry(settings: Settings) -> Retry:
    """Retry policy: exponential delays capped per attempt, fixed attempt ceiling."""
    backoff = ExponentialBackoff(
        cap=settings.redis_backoff_cap_seconds,
        base=settings.redis_backoff_base_seconds,
    )
    return Retry(backoff, settings.redis_max_retries)


def create_redis(settings: Settings) -> Redis:
    """Create the broker client. ``rediss://`` URLs enable TLS."""
    client = Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        retry=build_retry(settings),
        retry_on_error=[RedisConnectionError, RedisTimeoutError],
        health_check_interval=30,
    )
    # never log credentials embedded in the URL
    logger.info("Redis client created for %s", settings.redis_url.split("@")[-1])
    return client
