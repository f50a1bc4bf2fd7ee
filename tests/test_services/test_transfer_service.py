"""Tests for TransferService: dual handover confirmation."""

from __future__ import annotations

import pytest

from rehoming_escrow.domain.enums import (
    ActorRole,
    AdoptionRequestStatus,
    AdoptionType,
    EventType,
    OutboxTopic,
    ResponseDecision,
)
from rehoming_escrow.domain.exceptions import (
    InvalidStateTransitionError,
    ListingAlreadyAdoptedError,
    NotPartyError,
)
from rehoming_escrow.infrastructure.database.repositories import (
    EventRepository,
    OutboxRepository,
)
from rehoming_escrow.services import AdoptionService, TransferService


class TestConfirmPaidHandover:
    @pytest.mark.asyncio
    async def test_first_confirmation_waits_for_the_other_party(self, session, flow) -> None:
        _, _, tx = await flow.held()

        confirmation = await TransferService(session).confirm(
            tx.id, "owner-1", ActorRole.OWNER, message="Handed over with his blanket"
        )
        await session.commit()

        assert confirmation.owner_confirmed is True
        assert confirmation.owner_confirmed_at is not None
        assert confirmation.owner_message == "Handed over with his blanket"
        assert confirmation.adopter_confirmed is False
        assert confirmation.release_requested_at is None
        assert await OutboxRepository(session).get_by_aggregate(
            tx.id, OutboxTopic.RELEASE_REQUESTED
        ) == []

        notices = await OutboxRepository(session).get_by_aggregate(
            "adopter-1", OutboxTopic.NOTIFICATION
        )
        assert "transfer.confirmation_requested" in [m.payload["event"] for m in notices]

    @pytest.mark.asyncio
    async def test_second_confirmation_queues_one_release(self, session, flow) -> None:
        _, _, tx = await flow.held()
        await flow.confirm_both(tx)

        messages = await OutboxRepository(session).get_by_aggregate(
            tx.id, OutboxTopic.RELEASE_REQUESTED
        )
        assert len(messages) == 1
        assert messages[0].payload == {
            "transaction_id": str(tx.id),
            "requested_by": "adopter-1",
        }
        # Funds move only when the dispatcher delivers the message
        assert tx.escrow_status == "held"

        events = await EventRepository(session).get_by_aggregates([tx.id])
        types = [e.event_type for e in events]
        assert types.count(EventType.TRANSFER_CONFIRMED) == 2
        assert types.count(EventType.RELEASE_REQUESTED) == 1

    @pytest.mark.asyncio
    async def test_repeated_confirmation_is_a_no_op(self, session, flow) -> None:
        _, _, tx = await flow.held()
        await flow.confirm_both(tx)
        confirmation = await TransferService(session).confirm(tx.id, "owner-1", ActorRole.OWNER)
        await session.commit()

        assert confirmation.both_confirmed
        messages = await OutboxRepository(session).get_by_aggregate(
            tx.id, OutboxTopic.RELEASE_REQUESTED
        )
        assert len(messages) == 1

    @pytest.mark.asyncio
    async def test_actor_must_hold_the_role(self, session, flow) -> None:
        _, _, tx = await flow.held()
        svc = TransferService(session)

        with pytest.raises(NotPartyError):
            await svc.confirm(tx.id, "adopter-1", ActorRole.OWNER)
        with pytest.raises(NotPartyError):
            await svc.confirm(tx.id, "stranger", ActorRole.ADOPTER)

    @pytest.mark.asyncio
    async def test_no_confirmation_after_refund(self, session, flow) -> None:
        _, _, tx = await flow.held()
        await flow.escrow().refund(tx.id, reason="owner_withdrew")
        await session.commit()

        with pytest.raises(InvalidStateTransitionError):
            await TransferService(session).confirm(tx.id, "owner-1", ActorRole.OWNER)

    @pytest.mark.asyncio
    async def test_open_dispute_holds_back_the_release(self, session, flow) -> None:
        _, _, tx = await flow.held()
        tx.dispute_status = "open"
        await session.commit()

        await flow.confirm_both(tx)
        assert await OutboxRepository(session).get_by_aggregate(
            tx.id, OutboxTopic.RELEASE_REQUESTED
        ) == []


class TestConfirmFreeHandover:
    @pytest.mark.asyncio
    async def test_both_confirmations_complete_the_adoption(self, session, settings, flow) -> None:
        pet, adoption_request = await flow.accepted(AdoptionType.FREE, price=None)
        svc = TransferService(session)

        first = await svc.confirm_handover(adoption_request.id, "adopter-1", ActorRole.ADOPTER)
        await session.commit()
        assert first.adopter_confirmed is True
        assert adoption_request.status == AdoptionRequestStatus.ACCEPTED
        assert pet.is_adopted is False

        await svc.confirm_handover(adoption_request.id, "owner-1", ActorRole.OWNER)
        await session.commit()
        assert adoption_request.status == AdoptionRequestStatus.COMPLETED
        assert pet.is_adopted is True

        with pytest.raises(ListingAlreadyAdoptedError):
            await AdoptionService(session, settings).create_request(pet.id, "adopter-2")

    @pytest.mark.asyncio
    async def test_repeat_after_completion_is_a_no_op(self, session, flow) -> None:
        _, adoption_request = await flow.accepted(AdoptionType.FREE, price=None)
        svc = TransferService(session)
        await svc.confirm_handover(adoption_request.id, "adopter-1", ActorRole.ADOPTER)
        await svc.confirm_handover(adoption_request.id, "owner-1", ActorRole.OWNER)
        await session.commit()

        again = await svc.confirm_handover(adoption_request.id, "owner-1", ActorRole.OWNER)
        assert again.both_confirmed
        assert adoption_request.status == AdoptionRequestStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_paid_listing_uses_transaction_confirmation(self, session, flow) -> None:
        _, adoption_request, _ = await flow.held()
        with pytest.raises(InvalidStateTransitionError):
            await TransferService(session).confirm_handover(
                adoption_request.id, "owner-1", ActorRole.OWNER
            )

    @pytest.mark.asyncio
    async def test_rejected_request_cannot_be_handed_over(self, session, settings, flow) -> None:
        pet = await flow.listing(AdoptionType.FREE, price=None)
        adoption_request = await flow.request(pet)
        await AdoptionService(session, settings).respond(
            adoption_request.id, "owner-1", ResponseDecision.REJECT
        )
        await session.commit()

        with pytest.raises(InvalidStateTransitionError):
            await TransferService(session).confirm_handover(
                adoption_request.id, "owner-1", ActorRole.OWNER
            )


class TestPendingTransfers:
    @pytest.mark.asyncio
    async def test_lists_handovers_awaiting_the_user(self, session, flow) -> None:
        _, _, tx = await flow.held()
        svc = TransferService(session)

        assert [c.transaction_id for c in await svc.get_pending_transfers("owner-1")] == [tx.id]
        assert [c.transaction_id for c in await svc.get_pending_transfers("adopter-1")] == [tx.id]

        await flow.confirm(tx, ActorRole.OWNER)
        assert await svc.get_pending_transfers("owner-1") == []
        assert len(await svc.get_pending_transfers("adopter-1")) == 1
        assert await svc.get_pending_transfers("stranger") == []


class TestRequeueRelease:
    @pytest.mark.asyncio
    async def test_pending_release_is_not_requeued(self, session, flow) -> None:
        _, _, tx = await flow.held()
        await flow.confirm_both(tx)
        svc = TransferService(session)

        assert await svc.find_stalled_releases() == []
        assert await svc.requeue_release(tx.id) is False

        releases = await OutboxRepository(session).get_by_aggregate(
            tx.id, OutboxTopic.RELEASE_REQUESTED
        )
        assert len(releases) == 1

    @pytest.mark.asyncio
    async def test_unconfirmed_handover_is_not_requeued(self, session, flow) -> None:
        _, _, tx = await flow.held()
        await flow.confirm(tx, ActorRole.OWNER)

        assert await TransferService(session).requeue_release(tx.id) is False
