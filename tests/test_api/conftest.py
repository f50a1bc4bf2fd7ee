"""HTTP client fixtures: the real application wired to the test database."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from rehoming_escrow.api import deps
from rehoming_escrow.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi import FastAPI

OWNER_HEADERS = {"X-User-ID": "owner-1"}
ADOPTER_HEADERS = {"X-User-ID": "adopter-1"}
ARBITRATION_HEADERS = {"X-Arbitration-Key": "test-arbitration-key"}


@pytest.fixture
def app(session_factory, gateway, notifier, arbitration, settings) -> FastAPI:
    async def _session() -> AsyncGenerator:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application = create_app()
    application.dependency_overrides.update(
        {
            deps.get_db_session: _session,
            deps.get_db_session_factory: lambda: session_factory,
            deps.get_app_settings: lambda: settings,
            deps.get_payment_gateway: lambda: gateway,
            deps.get_notifier: lambda: notifier,
            deps.get_arbitration_service: lambda: arbitration,
            deps.get_redis_client: lambda: None,
        }
    )
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class Api:
    """Thin helpers over the HTTP endpoints for multi-step tests."""

    def __init__(self, client: AsyncClient) -> None:
        self.client = client

    async def listing(self, **overrides: object) -> dict:
        body = {
            "name": "Biscuit",
            "species": "dog",
            "breed": "Beagle",
            "age": 3,
            "description": "Friendly beagle, good with children",
            "adoption_type": "paid",
            "price": "1000.00",
        }
        body.update(overrides)
        resp = await self.client.post("/api/v1/listings", json=body, headers=OWNER_HEADERS)
        assert resp.status_code == 201, resp.text
        return resp.json()

    async def request(self, pet_id: str, headers: dict = ADOPTER_HEADERS) -> dict:
        resp = await self.client.post(
            f"/api/v1/listings/{pet_id}/adoption-requests",
            json={"message": "We have a big garden"},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    async def accept(self, request_id: str) -> dict:
        resp = await self.client.post(
            f"/api/v1/adoption-requests/{request_id}/respond",
            json={"decision": "accept"},
            headers=OWNER_HEADERS,
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    async def pay(self, request_id: str, amount: str = "1000.00") -> dict:
        resp = await self.client.post(
            f"/api/v1/adoption-requests/{request_id}/payment",
            json={"amount": amount},
            headers=ADOPTER_HEADERS,
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    async def held(self) -> dict:
        pet = await self.listing()
        adoption_request = await self.request(pet["id"])
        await self.accept(adoption_request["id"])
        return await self.pay(adoption_request["id"])

    async def confirm(self, tx_id: str, role: str) -> dict:
        headers = OWNER_HEADERS if role == "owner" else ADOPTER_HEADERS
        resp = await self.client.post(
            f"/api/v1/transactions/{tx_id}/confirm-transfer",
            json={"role": role},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        return resp.json()


@pytest.fixture
def api(client: AsyncClient) -> Api:
    return Api(client)
