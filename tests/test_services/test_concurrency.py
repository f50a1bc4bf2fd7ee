"""Racing writers on the same record.

A second session loads its copy of the record first, then the first session
commits a competing change. The second session keeps its loaded rows, so its
write is a stale compare-and-swap and must lose with a Conflict before any
side effect (gateway call, outbox message) happens.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from rehoming_escrow.domain.enums import (
    ActorRole,
    AdoptionRequestStatus,
    EscrowStatus,
    EventType,
    OutboxStatus,
    OutboxTopic,
    ResponseDecision,
    TransactionStatus,
)
from rehoming_escrow.domain.exceptions import ConcurrentUpdateError, ConflictError
from rehoming_escrow.infrastructure.database.repositories import (
    AdoptionRequestRepository,
    ConfirmationRepository,
    EventRepository,
    OutboxRepository,
    PetRepository,
    TransactionRepository,
)
from rehoming_escrow.services import (
    AdoptionService,
    EscrowService,
    ListingService,
    TransferService,
)
from rehoming_escrow.services.base import utcnow


class TestReleaseRefundRace:
    @pytest.mark.asyncio
    async def test_refund_loses_to_committed_release(
        self, session, session_factory, gateway, settings, flow
    ) -> None:
        _, _, tx = await flow.held()
        tx_id = tx.id
        await flow.confirm(tx, ActorRole.OWNER)

        async with session_factory() as late:
            stale_tx = await TransactionRepository(late).get_by_id(tx_id)
            stale_confirmation = await ConfirmationRepository(late).get_by_transaction(tx_id)
            assert stale_tx.escrow_status == EscrowStatus.HELD
            assert not stale_confirmation.both_confirmed

            await flow.confirm(tx, ActorRole.ADOPTER)
            await flow.escrow().release(tx_id)
            await session.commit()

            with pytest.raises(ConcurrentUpdateError):
                await EscrowService(late, gateway, settings).refund(tx_id, reason="timeout")
            await late.rollback()

        assert gateway.calls("refund") == []
        async with session_factory() as check:
            stored = await TransactionRepository(check).get_by_id(tx_id)
            assert stored.status == TransactionStatus.COMPLETED
            assert stored.escrow_status == EscrowStatus.RELEASED

    @pytest.mark.asyncio
    async def test_release_loses_to_committed_refund(
        self, session, session_factory, gateway, settings, flow
    ) -> None:
        pet, adoption_request, tx = await flow.held()
        tx_id, request_id, pet_id = tx.id, adoption_request.id, pet.id
        await flow.confirm_both(tx)

        async with session_factory() as late:
            stale_tx = await TransactionRepository(late).get_by_id(tx_id)
            stale_confirmation = await ConfirmationRepository(late).get_by_transaction(tx_id)
            stale_request = await AdoptionRequestRepository(late).get_by_id(request_id)
            stale_pet = await PetRepository(late).get_by_id(pet_id)
            assert stale_confirmation.both_confirmed
            assert stale_tx.escrow_status == EscrowStatus.HELD
            assert stale_request.status == AdoptionRequestStatus.PET_TRANSFER_PENDING
            assert stale_pet.active_request_id == request_id

            await flow.escrow().refund(
                tx_id,
                reason="dispute_resolved_for_adopter",
                actor="ARBITRATION",
                by_arbitration=True,
            )
            await session.commit()

            with pytest.raises(ConcurrentUpdateError):
                await EscrowService(late, gateway, settings).release(tx_id)
            await late.rollback()

        async with session_factory() as check:
            stored = await TransactionRepository(check).get_by_id(tx_id)
            assert stored.escrow_status == EscrowStatus.REFUNDED
            events = await EventRepository(check).get_by_aggregates([tx_id])
            assert EventType.FUNDS_RELEASED not in [e.event_type for e in events]


class TestTimeoutRefundRace:
    @pytest.mark.asyncio
    async def test_refund_loses_to_confirmation_committed_after_the_scan(
        self, session, session_factory, gateway, settings, flow
    ) -> None:
        _, _, tx = await flow.held()
        tx_id = tx.id
        await flow.confirm(tx, ActorRole.OWNER)

        async with session_factory() as late:
            escrow = EscrowService(late, gateway, settings)
            stale_confirmation = await ConfirmationRepository(late).get_by_transaction(tx_id)
            assert stale_confirmation.owner_confirmed
            assert not stale_confirmation.adopter_confirmed
            (candidate,) = await escrow.find_stale_transfers(now=utcnow() + timedelta(days=31))
            assert candidate.id == tx_id

            await flow.confirm(tx, ActorRole.ADOPTER)

            with pytest.raises(ConcurrentUpdateError):
                await escrow.refund(tx_id, reason="transfer_confirmation_timeout")
            await late.rollback()

        assert gateway.calls("refund") == []
        async with session_factory() as check:
            stored = await TransactionRepository(check).get_by_id(tx_id)
            assert stored.escrow_status == EscrowStatus.HELD
            (release,) = await OutboxRepository(check).get_by_aggregate(
                tx_id, OutboxTopic.RELEASE_REQUESTED
            )
            assert release.status == OutboxStatus.PENDING


class TestListingRemovalRace:
    @pytest.mark.asyncio
    async def test_removal_loses_to_request_committed_after_the_count(
        self, session_factory, flow
    ) -> None:
        pet = await flow.listing()
        pet_id = pet.id
        count_open = AdoptionRequestRepository.count_non_terminal_for_pet

        async def count_then_request(repo, counted_pet_id):
            total = await count_open(repo, counted_pet_id)
            await flow.request(pet)
            return total

        async with session_factory() as owner_session:
            with (
                patch.object(
                    AdoptionRequestRepository, "count_non_terminal_for_pet", count_then_request
                ),
                pytest.raises(ConcurrentUpdateError),
            ):
                await ListingService(owner_session).remove_listing(pet_id, "owner-1")
            await owner_session.rollback()

        async with session_factory() as check:
            stored = await PetRepository(check).get_by_id(pet_id)
            assert stored.is_removed is False
            requests = await AdoptionRequestRepository(check).get_by_pet(pet_id)
            assert [r.status for r in requests] == [AdoptionRequestStatus.PENDING]

    @pytest.mark.asyncio
    async def test_request_loses_to_committed_removal(
        self, session, session_factory, settings, flow
    ) -> None:
        pet = await flow.listing()
        pet_id = pet.id

        async with session_factory() as late:
            stale_pet = await PetRepository(late).get_by_id(pet_id)
            assert stale_pet.is_available is True

            await ListingService(session).remove_listing(pet_id, "owner-1")
            await session.commit()

            with pytest.raises(ConcurrentUpdateError):
                await AdoptionService(late, settings).create_request(
                    pet_id, "adopter-1", "We have a big garden"
                )
            await late.rollback()

        async with session_factory() as check:
            assert await AdoptionRequestRepository(check).get_by_pet(pet_id) == []


class TestRacingResponses:
    @pytest.mark.asyncio
    async def test_accept_and_reject_race(self, session, session_factory, settings, flow) -> None:
        pet = await flow.listing()
        adoption_request = await flow.request(pet)
        request_id = adoption_request.id

        async with session_factory() as late:
            stale_request = await AdoptionRequestRepository(late).get_by_id(request_id)
            assert stale_request.status == AdoptionRequestStatus.PENDING

            await flow.accept(adoption_request)

            with pytest.raises(ConcurrentUpdateError):
                await AdoptionService(late, settings).respond(
                    request_id, "owner-1", ResponseDecision.REJECT
                )
            await late.rollback()

        async with session_factory() as check:
            stored = await AdoptionRequestRepository(check).get_by_id(request_id)
            assert stored.status == AdoptionRequestStatus.PAYMENT_PENDING

    @pytest.mark.asyncio
    async def test_two_acceptances_allocate_the_pet_once(
        self, session, session_factory, settings, flow
    ) -> None:
        pet = await flow.listing()
        pet_id = pet.id
        first = await flow.request(pet, "adopter-1")
        second = await flow.request(pet, "adopter-2")
        first_id, second_id = first.id, second.id

        async with session_factory() as late:
            stale_pet = await PetRepository(late).get_by_id(pet_id)
            stale_second = await AdoptionRequestRepository(late).get_by_id(second_id)
            assert stale_pet.active_request_id is None
            assert stale_second.status == AdoptionRequestStatus.PENDING

            await flow.accept(first)

            with pytest.raises(ConflictError):
                await AdoptionService(late, settings).respond(
                    second_id, "owner-1", ResponseDecision.ACCEPT
                )
            await late.rollback()

        async with session_factory() as check:
            stored_pet = await PetRepository(check).get_by_id(pet_id)
            assert stored_pet.active_request_id == first_id
            stored = await AdoptionRequestRepository(check).get_by_id(second_id)
            assert stored.status == AdoptionRequestStatus.PENDING


class TestRacingConfirmations:
    @pytest.mark.asyncio
    async def test_simultaneous_confirmations_queue_one_release(
        self, session, session_factory, flow
    ) -> None:
        _, _, tx = await flow.held()
        tx_id = tx.id

        async with session_factory() as late:
            stale_confirmation = await ConfirmationRepository(late).get_by_transaction(tx_id)
            assert not stale_confirmation.owner_confirmed

            await flow.confirm(tx, ActorRole.OWNER)

            with pytest.raises(ConcurrentUpdateError):
                await TransferService(late).confirm(tx_id, "adopter-1", ActorRole.ADOPTER)
            await late.rollback()

            # The retry sees the owner's confirmation and queues the release
            confirmation = await TransferService(late).confirm(
                tx_id, "adopter-1", ActorRole.ADOPTER
            )
            await late.commit()
            assert confirmation.both_confirmed

        async with session_factory() as check:
            releases = await OutboxRepository(check).get_by_aggregate(
                tx_id, OutboxTopic.RELEASE_REQUESTED
            )
            assert len(releases) == 1

    @pytest.mark.asyncio
    async def test_double_confirmation_by_the_same_party(
        self, session, session_factory, flow
    ) -> None:
        _, _, tx = await flow.held()
        tx_id = tx.id

        async with session_factory() as late:
            stale_confirmation = await ConfirmationRepository(late).get_by_transaction(tx_id)
            assert not stale_confirmation.owner_confirmed

            await flow.confirm(tx, ActorRole.OWNER)

            with pytest.raises(ConcurrentUpdateError):
                await TransferService(late).confirm(tx_id, "owner-1", ActorRole.OWNER)
            await late.rollback()

        async with session_factory() as check:
            events = await EventRepository(check).get_by_aggregates([tx_id])
            assert [e.event_type for e in events].count(EventType.TRANSFER_CONFIRMED) == 1
