"""FastAPI application entry point for the rehoming escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       start the background maintenance loop.
    2. Running: Serve the REST API at /api/v1/* on a single Uvicorn process.
    3. Shutdown: Stop the maintenance loop, close database and Redis connections.

Run with:
    uv run uvicorn rehoming_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from rehoming_escrow.config import get_settings
from rehoming_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from rehoming_escrow.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()

    # 3. Initialize Redis
    from rehoming_escrow.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Start timeouts and outbox delivery
    maintenance_task: asyncio.Task | None = None
    if settings.maintenance_enabled:
        from rehoming_escrow.api.deps import get_notifier, get_payment_gateway
        from rehoming_escrow.orchestration.maintenance import maintenance_loop

        maintenance_task = asyncio.create_task(
            maintenance_loop(
                get_session_factory(), get_payment_gateway(), get_notifier(), settings
            ),
            name="maintenance-loop",
        )

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if maintenance_task is not None:
        maintenance_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await maintenance_task
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Rehoming Escrow",
        description=(
            "Adoption requests, escrowed payments, handover confirmation "
            "and disputes for pet rehoming."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from rehoming_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from rehoming_escrow.api.routes.adoption_requests import router as requests_router
    from rehoming_escrow.api.routes.health import router as health_router
    from rehoming_escrow.api.routes.listings import router as listings_router
    from rehoming_escrow.api.routes.transactions import router as transactions_router
    from rehoming_escrow.api.routes.transfers import router as transfers_router

    app.include_router(health_router)
    app.include_router(listings_router)
    app.include_router(requests_router)
    app.include_router(transactions_router)
    app.include_router(transfers_router)

    return app


# The app instance used by Uvicorn
app = create_app()
