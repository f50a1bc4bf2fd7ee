"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services, gateway adapters, the caller's identity, and configuration.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

import structlog
from fastapi import Depends, Header

from rehoming_escrow.config import Settings, get_settings
from rehoming_escrow.infrastructure.database.engine import get_async_session, get_session_factory
from rehoming_escrow.infrastructure.gateways import (
    LoggingNotifier,
    ManualArbitrationService,
    RetryingPaymentGateway,
    SimulatedPaymentGateway,
)
from rehoming_escrow.infrastructure.redis_client import get_redis_or_none
from rehoming_escrow.services import (
    AdoptionService,
    DisputeService,
    EscrowService,
    ListingService,
    TransferService,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from rehoming_escrow.domain.ports import ArbitrationService, Notifier, PaymentGateway


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Provide the session factory for work that outlives the request session."""
    return get_session_factory()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_redis_client() -> aioredis.Redis | None:
    """Provide the Redis client, or None when Redis was not reachable at startup."""
    return get_redis_or_none()


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    """Provide the process-wide payment gateway wrapped in retry."""
    settings = get_settings()
    return RetryingPaymentGateway(
        SimulatedPaymentGateway(), attempts=settings.gateway_retry_attempts
    )


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return LoggingNotifier()


@lru_cache(maxsize=1)
def get_arbitration_service() -> ArbitrationService:
    return ManualArbitrationService()


async def get_actor_id(x_user_id: str = Header(..., alias="X-User-ID", min_length=1)) -> str:
    """Identify the caller. Authentication happens upstream of this service."""
    structlog.contextvars.bind_contextvars(actor_id=x_user_id)
    return x_user_id


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def get_listing_service(
    session: AsyncSession = Depends(get_db_session),
) -> ListingService:
    return ListingService(session)


async def get_adoption_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> AdoptionService:
    return AdoptionService(session, settings)


async def get_escrow_service(
    session: AsyncSession = Depends(get_db_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_app_settings),
    redis: aioredis.Redis | None = Depends(get_redis_client),
) -> EscrowService:
    return EscrowService(session, gateway, settings, redis=redis)


async def get_transfer_service(
    session: AsyncSession = Depends(get_db_session),
) -> TransferService:
    return TransferService(session)


async def get_dispute_service(
    session: AsyncSession = Depends(get_db_session),
    arbitration: ArbitrationService = Depends(get_arbitration_service),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_app_settings),
) -> DisputeService:
    return DisputeService(session, arbitration, gateway, settings)
