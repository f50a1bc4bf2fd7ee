"""Health check endpoint.

Checks the database and Redis for load balancers and container healthchecks.
Redis only backs payment idempotency keys, so a missing or unreachable Redis
reports ``degraded`` instead of failing the check.
"""

from __future__ import annotations

import redis.asyncio as aioredis  # noqa: TC002 - FastAPI resolves parameter annotations at runtime
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: TC002

from rehoming_escrow.api.deps import get_db_session_factory, get_redis_client
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.schemas.rehoming import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


async def _check_database(session_factory: async_sessionmaker[AsyncSession]) -> str:
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


async def _check_redis(redis: aioredis.Redis | None) -> str:
    if redis is None:
        return "not configured"
    try:
        await redis.ping()
    except Exception as exc:
        logger.error("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    redis: aioredis.Redis | None = Depends(get_redis_client),
) -> HealthResponse:
    database = await _check_database(session_factory)
    cache = await _check_redis(redis)

    if database != "healthy":
        overall = "unhealthy"
    elif cache != "healthy":
        overall = "degraded"
    else:
        overall = "ok"
    return HealthResponse(status=overall, database=database, redis=cache)
