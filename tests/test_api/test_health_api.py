"""Tests for the health endpoint."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from rehoming_escrow.api import deps


@pytest.mark.asyncio
async def test_degraded_without_redis(client) -> None:
    resp = await client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["database"] == "healthy"
    assert body["redis"] == "not configured"
    assert body["status"] == "degraded"


@pytest.mark.asyncio
async def test_ok_with_redis(app, client) -> None:
    redis = AsyncMock()
    app.dependency_overrides[deps.get_redis_client] = lambda: redis

    resp = await client.get("/health")

    assert resp.json()["status"] == "ok"
    redis.ping.assert_awaited_once()
