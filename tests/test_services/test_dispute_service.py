"""Tests for DisputeService: opening disputes and applying verdicts."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from rehoming_escrow.domain.enums import (
    AdoptionRequestStatus,
    DisputeOutcome,
    DisputeStatus,
    ErrorKind,
    EscrowStatus,
    EventType,
    TransactionStatus,
)
from rehoming_escrow.domain.exceptions import (
    ArbitrationUnavailableError,
    DisputeAlreadyExistsError,
    DisputeNotFoundError,
    DisputeOpenError,
    InvalidStateTransitionError,
    NotPartyError,
    PaymentGatewayError,
)
from rehoming_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EventRepository,
    TransactionRepository,
)
from rehoming_escrow.services import DisputeService

REASON = "The dog we received is not the one in the listing"


@pytest.fixture
def disputes(session, arbitration, gateway, settings) -> DisputeService:
    return DisputeService(session, arbitration, gateway, settings)


class TestOpenDispute:
    @pytest.mark.asyncio
    async def test_open_freezes_held_funds(self, session, flow, disputes) -> None:
        _, _, tx = await flow.held()

        dispute = await disputes.open(tx.id, "adopter-1", REASON, evidence="photo.jpg")
        await session.commit()

        assert dispute.status == DisputeStatus.OPEN
        assert dispute.opened_by == "adopter-1"
        assert dispute.arbitration_ref.startswith("arb_")
        assert tx.dispute_status == DisputeStatus.OPEN
        assert tx.escrow_status == EscrowStatus.HELD

        await flow.confirm_both(tx)
        with pytest.raises(DisputeOpenError) as exc_info:
            await flow.escrow().release(tx.id)
        assert exc_info.value.kind == ErrorKind.BLOCKED

    @pytest.mark.asyncio
    async def test_one_dispute_per_transaction(self, session, flow, disputes) -> None:
        _, _, tx = await flow.held()
        await disputes.open(tx.id, "adopter-1", REASON)
        await session.commit()

        with pytest.raises(DisputeAlreadyExistsError) as exc_info:
            await disputes.open(tx.id, "owner-1", "The adopter never collected the dog")
        assert exc_info.value.kind == ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_only_parties_may_dispute(self, flow, disputes) -> None:
        _, _, tx = await flow.held()
        with pytest.raises(NotPartyError):
            await disputes.open(tx.id, "stranger", REASON)

    @pytest.mark.asyncio
    async def test_failed_payment_cannot_be_disputed(
        self, session, gateway, flow, disputes
    ) -> None:
        _, adoption_request = await flow.accepted()
        gateway.declined_payers.add("adopter-1")
        with pytest.raises(PaymentGatewayError):
            await flow.pay(adoption_request)
        (failed,) = await TransactionRepository(session).get_by_request(adoption_request.id)

        with pytest.raises(InvalidStateTransitionError):
            await disputes.open(failed.id, "adopter-1", REASON)

    @pytest.mark.asyncio
    async def test_arbitration_outage_is_upstream_failure(
        self, session, gateway, settings, flow
    ) -> None:
        _, _, tx = await flow.held()
        tx_id = tx.id
        arbitration = AsyncMock()
        arbitration.submit_case.side_effect = ConnectionError("arbitration desk offline")
        svc = DisputeService(session, arbitration, gateway, settings)

        with pytest.raises(ArbitrationUnavailableError) as exc_info:
            await svc.open(tx_id, "adopter-1", REASON)
        assert exc_info.value.kind == ErrorKind.UPSTREAM_FAILURE
        await session.rollback()

        assert await DisputeRepository(session).get_by_transaction(tx_id) is None
        tx = await TransactionRepository(session).get_by_id(tx_id)
        assert tx.dispute_status == DisputeStatus.NONE


class TestResolveDispute:
    @pytest.mark.asyncio
    async def test_favor_adopter_refunds(self, session, gateway, flow, disputes) -> None:
        pet, adoption_request, tx = await flow.held()
        await disputes.open(tx.id, "adopter-1", REASON)
        await session.commit()

        dispute = await disputes.resolve(
            tx.id, DisputeOutcome.FAVOR_ADOPTER, note="Listing photos did not match"
        )
        await session.commit()

        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.outcome == DisputeOutcome.FAVOR_ADOPTER
        assert dispute.resolution_note == "Listing photos did not match"
        assert tx.status == TransactionStatus.REFUNDED
        assert tx.escrow_status == EscrowStatus.REFUNDED
        assert tx.refund_reason == "dispute_resolved_for_adopter"
        assert gateway.calls("refund") == [tx.gateway_ref]
        assert adoption_request.status == AdoptionRequestStatus.CANCELLED
        assert pet.is_available is True

    @pytest.mark.asyncio
    async def test_favor_owner_releases_without_confirmations(
        self, session, gateway, flow, disputes
    ) -> None:
        pet, adoption_request, tx = await flow.held()
        await disputes.open(tx.id, "owner-1", "The adopter took the dog but will not confirm")
        await session.commit()

        await disputes.resolve(tx.id, DisputeOutcome.FAVOR_OWNER)
        await session.commit()

        assert tx.status == TransactionStatus.COMPLETED
        assert tx.escrow_status == EscrowStatus.RELEASED
        assert tx.dispute_status == DisputeStatus.RESOLVED
        assert adoption_request.status == AdoptionRequestStatus.COMPLETED
        assert pet.is_adopted is True
        assert gateway.calls("refund") == []

    @pytest.mark.asyncio
    async def test_post_release_dispute_moves_no_money(
        self, session, gateway, flow, disputes
    ) -> None:
        _, _, tx = await flow.held()
        await flow.confirm_both(tx)
        await flow.escrow().release(tx.id)
        await session.commit()

        dispute = await disputes.open(tx.id, "adopter-1", "The dog has an undisclosed illness")
        await session.commit()
        await disputes.resolve(tx.id, DisputeOutcome.FAVOR_ADOPTER)
        await session.commit()

        assert tx.escrow_status == EscrowStatus.RELEASED
        assert tx.status == TransactionStatus.COMPLETED
        assert tx.dispute_status == DisputeStatus.RESOLVED
        assert gateway.calls("refund") == []

        events = await EventRepository(session).get_by_aggregates([dispute.id])
        assert [e.event_type for e in events] == [
            EventType.DISPUTE_OPENED,
            EventType.DISPUTE_RESOLVED_ADOPTER,
        ]

    @pytest.mark.asyncio
    async def test_resolving_twice_is_invalid_state(self, session, flow, disputes) -> None:
        _, _, tx = await flow.held()
        await disputes.open(tx.id, "adopter-1", REASON)
        await disputes.resolve(tx.id, DisputeOutcome.FAVOR_OWNER)
        await session.commit()

        with pytest.raises(InvalidStateTransitionError):
            await disputes.resolve(tx.id, DisputeOutcome.FAVOR_ADOPTER)

    @pytest.mark.asyncio
    async def test_nothing_to_resolve(self, flow, disputes) -> None:
        _, _, tx = await flow.held()
        with pytest.raises(InvalidStateTransitionError):
            await disputes.resolve(tx.id, DisputeOutcome.FAVOR_OWNER)


class TestGetDispute:
    @pytest.mark.asyncio
    async def test_visible_to_both_parties(self, session, flow, disputes) -> None:
        _, _, tx = await flow.held()
        opened = await disputes.open(tx.id, "adopter-1", REASON)
        await session.commit()

        assert (await disputes.get_dispute(tx.id, "owner-1")).id == opened.id
        with pytest.raises(NotPartyError):
            await disputes.get_dispute(tx.id, "stranger")

    @pytest.mark.asyncio
    async def test_missing_dispute_is_not_found(self, flow, disputes) -> None:
        _, _, tx = await flow.held()
        with pytest.raises(DisputeNotFoundError):
            await disputes.get_dispute(tx.id, "adopter-1")
