#!/usr/bin/env python3
"""Pet Rehoming Escrow - End-to-End Simulation.

Simulates three scenarios with OwnerBot and AdopterBot users:

    Scenario 1: Happy Path
        - Owner lists a paid dog
        - Adopter requests, owner accepts, adopter pays into escrow
        - Both confirm the handover -> funds released to the owner

    Scenario 2: Competing Adopters and a Declined Card
        - Two adopters ask for the same cat, the owner accepts one
        - Accepting the second request is refused
        - The first payment is declined, the retry succeeds

    Scenario 3: Dispute and Timeout
        - Adopter disputes a held payment -> arbitration refunds it
        - A second handover is never confirmed -> maintenance refunds it

Usage:
    # Option A: Against the configured database (DATABASE_URL):
    uv run python simulation.py

    # Option B: Throwaway SQLite file (no Docker needed):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 1
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from rehoming_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from rehoming_escrow.config import Settings, get_settings  # noqa: E402
from rehoming_escrow.domain.enums import (  # noqa: E402
    ActorRole,
    AdoptionType,
    DisputeOutcome,
    ResponseDecision,
    Species,
)
from rehoming_escrow.domain.exceptions import RehomingError  # noqa: E402
from rehoming_escrow.infrastructure.gateways import (  # noqa: E402
    LoggingNotifier,
    ManualArbitrationService,
    SimulatedPaymentGateway,
)
from rehoming_escrow.orchestration import dispatch_outbox, run_maintenance_cycle  # noqa: E402
from rehoming_escrow.services import (  # noqa: E402
    AdoptionService,
    DisputeService,
    EscrowService,
    ListingService,
    TransferService,
)
from rehoming_escrow.services.base import utcnow  # noqa: E402

# Module-level state
_engine = None
_session_factory = None
_tmpdir: tempfile.TemporaryDirectory | None = None
_settings: Settings | None = None

gateway = SimulatedPaymentGateway()
notifier = LoggingNotifier()
arbitration = ManualArbitrationService()


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize the database engine and create tables."""
    global _engine, _session_factory, _tmpdir, _settings

    if use_sqlite:
        from sqlalchemy.ext.asyncio import create_async_engine

        from rehoming_escrow.infrastructure.database import build_session_factory
        from rehoming_escrow.infrastructure.database.orm_models import Base

        _tmpdir = tempfile.TemporaryDirectory()
        url = f"sqlite+aiosqlite:///{Path(_tmpdir.name) / 'simulation.db'}"
        _settings = Settings(database_url=url)
        _engine = create_async_engine(url)
        _session_factory = build_session_factory(_engine)
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized", url=url)
    else:
        from rehoming_escrow.infrastructure.database import get_session_factory, init_db

        await init_db()
        _settings = get_settings()
        _session_factory = get_session_factory()


async def shutdown_database() -> None:
    """Close database connections."""
    global _engine, _session_factory, _tmpdir

    if _engine is not None:
        await _engine.dispose()
        _engine = None
    else:
        from rehoming_escrow.infrastructure.database import close_db

        await close_db()
    _session_factory = None
    if _tmpdir is not None:
        _tmpdir.cleanup()
        _tmpdir = None


async def deliver_outbox() -> dict:
    """Run the outbox dispatcher until nothing is left to deliver."""
    total = {"processed": 0, "skipped": 0, "retrying": 0, "failed": 0}
    while True:
        report = await dispatch_outbox(_session_factory, gateway, notifier, _settings)
        for key, value in report.items():
            total[key] += value
        if not any(report.values()):
            return total


# ---------------------------------------------------------------------------
# Bot users
# ---------------------------------------------------------------------------
@dataclass
class OwnerBot:
    """Simulated owner who lists pets and decides on requests."""

    user_id: str = "owner-olivia"

    async def list_pet(
        self,
        session: Any,
        name: str,
        species: Species,
        adoption_type: AdoptionType,
        price: Decimal | None = None,
    ) -> Any:
        pet = await ListingService(session).create_listing(
            owner_id=self.user_id,
            name=name,
            species=species,
            adoption_type=adoption_type,
            price=price,
            description=f"{name} needs a new home",
        )
        await session.commit()
        logger.info("🔵 OWNER: Pet listed", pet_id=str(pet.id), name=name, price=str(price))
        return pet

    async def respond(self, session: Any, request_id: Any, decision: ResponseDecision) -> Any:
        adoption_request = await AdoptionService(session, _settings).respond(
            request_id, self.user_id, decision
        )
        await session.commit()
        logger.info(
            "🔵 OWNER: Responded",
            request_id=str(request_id),
            decision=decision.value,
            status=adoption_request.status,
        )
        return adoption_request

    async def confirm_handover(self, session: Any, tx_id: Any) -> None:
        await TransferService(session).confirm(tx_id, self.user_id, ActorRole.OWNER)
        await session.commit()
        logger.info("🔵 OWNER: Handover confirmed", transaction_id=str(tx_id))


@dataclass
class AdopterBot:
    """Simulated adopter who requests pets, pays and confirms handovers."""

    user_id: str = "adopter-adam"

    async def request(self, session: Any, pet_id: Any) -> Any:
        adoption_request = await AdoptionService(session, _settings).create_request(
            pet_id, self.user_id, "We have a fenced garden and lots of time"
        )
        await session.commit()
        logger.info(
            "🟢 ADOPTER: Requested", adopter=self.user_id, request_id=str(adoption_request.id)
        )
        return adoption_request

    async def pay(self, session: Any, request_id: Any, amount: Decimal) -> Any:
        escrow = EscrowService(session, gateway, _settings)
        try:
            tx = await escrow.initiate_payment(request_id, self.user_id, amount)
        except RehomingError as exc:
            await session.rollback()
            logger.info("🟢 ADOPTER: Payment failed", code=exc.code, message=exc.message)
            return None
        await session.commit()
        logger.info(
            "🟢 ADOPTER: Funds held in escrow", transaction_id=str(tx.id), amount=str(amount)
        )
        return tx

    async def confirm_handover(self, session: Any, tx_id: Any) -> None:
        await TransferService(session).confirm(tx_id, self.user_id, ActorRole.ADOPTER)
        await session.commit()
        logger.info("🟢 ADOPTER: Handover confirmed", transaction_id=str(tx_id))

    async def dispute(self, session: Any, tx_id: Any, reason: str) -> None:
        dispute = await DisputeService(session, arbitration, gateway, _settings).open(
            tx_id, self.user_id, reason
        )
        await session.commit()
        logger.info("🟢 ADOPTER: Dispute opened", arbitration_ref=dispute.arbitration_ref)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    print(f"\n--- {text} ---\n")


async def print_transaction(tx_id: Any, actor_id: str) -> None:
    """Print the settled state and audit trail of a transaction."""
    async with _session_factory() as session:
        escrow = EscrowService(session, gateway, _settings)
        tx = await escrow.get_transaction(tx_id, actor_id)
        events = await escrow.get_events(tx_id, actor_id)

    print(f"  Status: {tx.status} / escrow {tx.escrow_status} / dispute {tx.dispute_status}")
    print(f"  Amount: {tx.amount}  fee: {tx.platform_fee}  owner receives: {tx.net_amount}")
    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "-"
        print(f"    {i}. [{evt.event_type}] {old} -> {evt.new_status} (by {evt.actor})")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    """Paid adoption from listing to released funds."""
    banner("SCENARIO 1: Happy Path - Paid Adoption Settles")

    owner = OwnerBot()
    adopter = AdopterBot()
    price = Decimal("1000.00")

    async with _session_factory() as session:
        section("Step 1: Owner lists Biscuit")
        pet = await owner.list_pet(session, "Biscuit", Species.DOG, AdoptionType.PAID, price)

        section("Step 2: Adopter requests, owner accepts")
        adoption_request = await adopter.request(session, pet.id)
        await owner.respond(session, adoption_request.id, ResponseDecision.ACCEPT)

        section("Step 3: Adopter pays into escrow")
        tx = await adopter.pay(session, adoption_request.id, price)

        section("Step 4: Both parties confirm the handover")
        await owner.confirm_handover(session, tx.id)
        await adopter.confirm_handover(session, tx.id)

    section("Step 5: Outbox delivers the release")
    report = await deliver_outbox()
    print(f"  Outbox: {report}")

    await print_transaction(tx.id, owner.user_id)


# ===========================================================================
# Scenario 2: Competing Adopters and a Declined Card
# ===========================================================================
async def scenario_2_competing_adopters() -> None:
    """One pet, two adopters, one declined payment."""
    banner("SCENARIO 2: Competing Adopters and a Declined Card")

    owner = OwnerBot()
    first = AdopterBot(user_id="adopter-amira")
    second = AdopterBot(user_id="adopter-ben")
    price = Decimal("250.00")

    async with _session_factory() as session:
        section("Step 1: Two adopters ask for Mittens")
        pet = await owner.list_pet(session, "Mittens", Species.CAT, AdoptionType.PAID, price)
        first_request = await first.request(session, pet.id)
        second_request = await second.request(session, pet.id)
        # A rollback expires loaded rows, so keep the ids
        first_id, second_id = first_request.id, second_request.id

        section("Step 2: Owner accepts the first request")
        await owner.respond(session, first_id, ResponseDecision.ACCEPT)

        section("Step 3: Owner tries to accept the second request too")
        try:
            await owner.respond(session, second_id, ResponseDecision.ACCEPT)
        except RehomingError as exc:
            await session.rollback()
            print(f"  Refused: {exc.code}")

        section("Step 4: First payment is declined")
        gateway.declined_payers.add(first.user_id)
        assert await first.pay(session, first_id, price) is None

        section("Step 5: Adopter retries with a working card")
        gateway.declined_payers.discard(first.user_id)
        tx = await first.pay(session, first_id, price)

    await deliver_outbox()
    await print_transaction(tx.id, first.user_id)


# ===========================================================================
# Scenario 3: Dispute and Timeout
# ===========================================================================
async def scenario_3_dispute_and_timeout() -> None:
    """Held funds go back to adopters through arbitration and through maintenance."""
    banner("SCENARIO 3: Dispute and Timeout - Adopters Are Refunded")

    owner = OwnerBot()
    adopter = AdopterBot(user_id="adopter-chen")
    price = Decimal("400.00")

    async with _session_factory() as session:
        section("Step 1: Held payment for Rex")
        pet = await owner.list_pet(session, "Rex", Species.DOG, AdoptionType.PAID, price)
        adoption_request = await adopter.request(session, pet.id)
        await owner.respond(session, adoption_request.id, ResponseDecision.ACCEPT)
        disputed = await adopter.pay(session, adoption_request.id, price)

        section("Step 2: Adopter disputes, arbitration favors the adopter")
        await adopter.dispute(session, disputed.id, "The dog is not the one in the photos")
        await DisputeService(session, arbitration, gateway, _settings).resolve(
            disputed.id, DisputeOutcome.FAVOR_ADOPTER, "Listing was misleading"
        )
        await session.commit()

        section("Step 3: Held payment for Luna, never handed over")
        pet = await owner.list_pet(session, "Luna", Species.CAT, AdoptionType.PAID, price)
        adoption_request = await adopter.request(session, pet.id)
        await owner.respond(session, adoption_request.id, ResponseDecision.ACCEPT)
        abandoned = await adopter.pay(session, adoption_request.id, price)

    section("Step 4: Maintenance runs a month later")
    report = await run_maintenance_cycle(
        _session_factory, gateway, notifier, _settings, now=utcnow() + timedelta(days=31)
    )
    print(f"  Maintenance: {report}")

    await print_transaction(disputed.id, adopter.user_id)
    await print_transaction(abandoned.id, adopter.user_id)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_competing_adopters,
    3: scenario_3_dispute_and_timeout,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when ``scenario`` is 0."""
    if scenario and scenario not in SCENARIOS:
        print(f"Unknown scenario {scenario}. Available: 1, 2, 3")
        return

    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n" + "🐾" * 35)
        print("  PET REHOMING ESCROW - SIMULATION")
        print(f"  Database: {'SQLite (temporary file)' if use_sqlite else 'configured'}")
        print("🐾" * 35 + "\n")

        selected = [SCENARIOS[scenario]] if scenario else list(SCENARIOS.values())
        for run_scenario in selected:
            await run_scenario()

        print("\n" + "=" * 70)
        print("  ✅ SCENARIOS COMPLETED")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Pet Rehoming Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use a temporary SQLite file instead of the configured database.",
    )
    args = parser.parse_args()

    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
