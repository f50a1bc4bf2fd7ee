"""Redis client for payment idempotency keys.

Redis is optional: when it is unreachable at startup the service runs
without replay protection and the payment endpoint ignores Idempotency-Key.

Usage:
    from rehoming_escrow.infrastructure.redis_client import claim_idempotency, get_redis_or_none

    redis = get_redis_or_none()
    if redis is not None and not await claim_idempotency(redis, "pay:abc"):
        ...  # duplicate
"""

from __future__ import annotations

import redis.asyncio as aioredis

from rehoming_escrow.config import get_settings
from rehoming_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

IDEMPOTENCY_PREFIX = "idempotency:"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis_or_none() -> aioredis.Redis | None:
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def claim_idempotency(
    redis: aioredis.Redis,
    key: str,
    ttl_seconds: int | None = None,
) -> bool:
    """Atomically claim an idempotency key (SET NX with a TTL).

    Returns True if this caller claimed the key, False if it was already used.
    """
    ttl = ttl_seconds or get_settings().redis_idempotency_ttl_seconds
    claimed = await redis.set(f"{IDEMPOTENCY_PREFIX}{key}", "1", nx=True, ex=ttl)
    return bool(claimed)


async def release_idempotency(redis: aioredis.Redis, key: str) -> None:
    """Forget a claimed key so a failed operation can be retried with it."""
    await redis.delete(f"{IDEMPOTENCY_PREFIX}{key}")
