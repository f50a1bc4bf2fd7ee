"""Shared test fixtures for the rehoming escrow test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite), so that several
      sessions can interleave the way concurrent requests do
    - Collaborator fakes (simulated gateway, recording notifier)
    - A ``flow`` helper that drives a listing through the adoption workflow
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from rehoming_escrow.config import Settings
from rehoming_escrow.domain.enums import ActorRole, AdoptionType, ResponseDecision, Species
from rehoming_escrow.infrastructure.database.engine import build_session_factory
from rehoming_escrow.infrastructure.database.orm_models import Base
from rehoming_escrow.infrastructure.gateways import (
    ManualArbitrationService,
    SimulatedPaymentGateway,
)
from rehoming_escrow.services import (
    AdoptionService,
    EscrowService,
    ListingService,
    TransferService,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from rehoming_escrow.infrastructure.database.orm_models import (
        AdoptionRequest,
        RehomingPet,
        RehomingTransaction,
    )

OWNER = "owner-1"
ADOPTER = "adopter-1"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Notifier that keeps every message for assertions."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = fail

    async def send(self, user_id: str, event: str, data: dict) -> None:
        if self.fail:
            raise ConnectionError("notification channel down")
        self.sent.append((user_id, event, data))

    def events_for(self, user_id: str) -> list[str]:
        return [event for uid, event, _ in self.sent if uid == user_id]


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        app_env="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'rehoming.db'}",
        platform_fee_rate=Decimal("0.05"),
        payment_timeout_days=14,
        handover_timeout_days=14,
        transfer_timeout_days=30,
        maintenance_enabled=False,
        outbox_max_attempts=3,
        gateway_retry_attempts=3,
        arbitration_api_key="test-arbitration-key",
    )


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def arbitration() -> ManualArbitrationService:
    return ManualArbitrationService()


# ---------------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------------


class Workflow:
    """Drives listings through the workflow, committing after every step."""

    owner = OWNER
    adopter = ADOPTER

    def __init__(
        self,
        session: AsyncSession,
        gateway: SimulatedPaymentGateway,
        settings: Settings,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.settings = settings

    def escrow(self, session: AsyncSession | None = None) -> EscrowService:
        return EscrowService(session or self.session, self.gateway, self.settings)

    async def listing(
        self,
        adoption_type: AdoptionType = AdoptionType.PAID,
        price: str | None = "1000.00",
        owner_id: str = OWNER,
        name: str = "Biscuit",
    ) -> RehomingPet:
        pet = await ListingService(self.session).create_listing(
            owner_id=owner_id,
            name=name,
            species=Species.DOG,
            adoption_type=adoption_type,
            price=Decimal(price) if adoption_type == AdoptionType.PAID and price else None,
            breed="Beagle",
            age=3,
            description="Friendly beagle, good with children",
        )
        await self.session.commit()
        return pet

    async def request(self, pet: RehomingPet, adopter_id: str = ADOPTER) -> AdoptionRequest:
        adoption_request = await AdoptionService(self.session, self.settings).create_request(
            pet.id, adopter_id, "We have a big garden"
        )
        await self.session.commit()
        return adoption_request

    async def accept(self, adoption_request: AdoptionRequest) -> AdoptionRequest:
        adoption_request = await AdoptionService(self.session, self.settings).respond(
            adoption_request.id, OWNER, ResponseDecision.ACCEPT
        )
        await self.session.commit()
        return adoption_request

    async def accepted(
        self,
        adoption_type: AdoptionType = AdoptionType.PAID,
        price: str | None = "1000.00",
    ) -> tuple[RehomingPet, AdoptionRequest]:
        pet = await self.listing(adoption_type, price)
        adoption_request = await self.accept(await self.request(pet))
        return pet, adoption_request

    async def pay(
        self, adoption_request: AdoptionRequest, amount: str = "1000.00"
    ) -> RehomingTransaction:
        tx = await self.escrow().initiate_payment(adoption_request.id, ADOPTER, Decimal(amount))
        await self.session.commit()
        return tx

    async def held(
        self, price: str = "1000.00"
    ) -> tuple[RehomingPet, AdoptionRequest, RehomingTransaction]:
        pet, adoption_request = await self.accepted(price=price)
        tx = await self.pay(adoption_request, price)
        return pet, adoption_request, tx

    async def confirm(self, tx: RehomingTransaction, role: ActorRole) -> None:
        actor_id = OWNER if role == ActorRole.OWNER else ADOPTER
        await TransferService(self.session).confirm(tx.id, actor_id, role)
        await self.session.commit()

    async def confirm_both(self, tx: RehomingTransaction) -> None:
        await self.confirm(tx, ActorRole.OWNER)
        await self.confirm(tx, ActorRole.ADOPTER)


@pytest.fixture
def flow(
    session: AsyncSession,
    gateway: SimulatedPaymentGateway,
    settings: Settings,
) -> Workflow:
    return Workflow(session, gateway, settings)
