"""Tests for AdoptionService: requests, owner decisions and expiry."""

from __future__ import annotations

import uuid

import pytest

from rehoming_escrow.domain.enums import (
    ActorRole,
    AdoptionRequestStatus,
    AdoptionType,
    ErrorKind,
    EventType,
    OutboxTopic,
    ResponseDecision,
)
from rehoming_escrow.domain.exceptions import (
    AdoptionRequestNotFoundError,
    DuplicateAdoptionRequestError,
    InvalidStateTransitionError,
    ListingAlreadyAllocatedError,
    ListingNotFoundError,
    NotListingOwnerError,
    NotPartyError,
    OwnListingRequestError,
)
from rehoming_escrow.infrastructure.database.repositories import (
    ConfirmationRepository,
    EventRepository,
    OutboxRepository,
)
from rehoming_escrow.services import AdoptionService, ListingService


class TestCreateRequest:
    @pytest.mark.asyncio
    async def test_creates_pending_request(self, session, flow) -> None:
        pet = await flow.listing()
        adoption_request = await flow.request(pet)

        assert adoption_request.status == AdoptionRequestStatus.PENDING
        assert adoption_request.adopter_id == "adopter-1"
        assert adoption_request.message == "We have a big garden"

        events = await EventRepository(session).get_by_aggregates([adoption_request.id])
        assert [e.event_type for e in events] == [EventType.REQUEST_CREATED]

        notices = await OutboxRepository(session).get_by_aggregate(
            "owner-1", OutboxTopic.NOTIFICATION
        )
        assert [m.payload["event"] for m in notices] == ["adoption_request.received"]

    @pytest.mark.asyncio
    async def test_owner_cannot_request_own_pet(self, session, settings, flow) -> None:
        pet = await flow.listing()
        with pytest.raises(OwnListingRequestError) as exc_info:
            await AdoptionService(session, settings).create_request(pet.id, "owner-1")
        assert exc_info.value.kind == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_duplicate_open_request_conflicts(self, session, settings, flow) -> None:
        pet = await flow.listing()
        await flow.request(pet)
        with pytest.raises(DuplicateAdoptionRequestError) as exc_info:
            await AdoptionService(session, settings).create_request(pet.id, "adopter-1")
        assert exc_info.value.kind == ErrorKind.CONFLICT

    @pytest.mark.asyncio
    async def test_can_request_again_after_rejection(self, session, settings, flow) -> None:
        pet = await flow.listing()
        first = await flow.request(pet)
        svc = AdoptionService(session, settings)
        await svc.respond(first.id, "owner-1", ResponseDecision.REJECT)
        await session.commit()

        second = await svc.create_request(pet.id, "adopter-1")
        assert second.id != first.id
        assert second.status == AdoptionRequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_removed_listing_is_not_found(self, session, settings, flow) -> None:
        pet = await flow.listing()
        await ListingService(session).remove_listing(pet.id, "owner-1")
        await session.commit()
        with pytest.raises(ListingNotFoundError):
            await AdoptionService(session, settings).create_request(pet.id, "adopter-1")


class TestRespond:
    @pytest.mark.asyncio
    async def test_accept_paid_listing(self, session, flow) -> None:
        pet, adoption_request = await flow.accepted()

        assert adoption_request.status == AdoptionRequestStatus.PAYMENT_PENDING
        assert pet.active_request_id == adoption_request.id
        assert pet.is_available is False
        # The confirmation opens only once funds are held
        assert await ConfirmationRepository(session).get_by_request(adoption_request.id) is None

    @pytest.mark.asyncio
    async def test_accept_free_listing_opens_handover(self, session, flow) -> None:
        pet, adoption_request = await flow.accepted(AdoptionType.FREE, price=None)

        assert adoption_request.status == AdoptionRequestStatus.ACCEPTED
        confirmation = await ConfirmationRepository(session).get_by_request(adoption_request.id)
        assert confirmation is not None
        assert confirmation.transaction_id is None
        assert confirmation.owner_id == "owner-1"
        assert confirmation.adopter_id == "adopter-1"
        assert not confirmation.owner_confirmed and not confirmation.adopter_confirmed

    @pytest.mark.asyncio
    async def test_reject(self, session, settings, flow) -> None:
        pet = await flow.listing()
        adoption_request = await flow.request(pet)
        rejected = await AdoptionService(session, settings).respond(
            adoption_request.id, "owner-1", ResponseDecision.REJECT
        )
        assert rejected.status == AdoptionRequestStatus.REJECTED
        assert pet.active_request_id is None

    @pytest.mark.asyncio
    async def test_only_the_owner_may_respond(self, session, settings, flow) -> None:
        pet = await flow.listing()
        adoption_request = await flow.request(pet)
        with pytest.raises(NotListingOwnerError):
            await AdoptionService(session, settings).respond(
                adoption_request.id, "adopter-1", ResponseDecision.ACCEPT
            )

    @pytest.mark.asyncio
    async def test_responding_twice_is_invalid_state(self, session, settings, flow) -> None:
        _, adoption_request = await flow.accepted()
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await AdoptionService(session, settings).respond(
                adoption_request.id, "owner-1", ResponseDecision.REJECT
            )
        assert exc_info.value.kind == ErrorKind.INVALID_STATE

    @pytest.mark.asyncio
    async def test_second_acceptance_conflicts(self, session, settings, flow) -> None:
        """Two adopters request the same pet; once A1 is accepted, accepting A2 conflicts."""
        pet = await flow.listing()
        first = await flow.request(pet, "adopter-1")
        second = await flow.request(pet, "adopter-2")
        await flow.accept(first)

        svc = AdoptionService(session, settings)
        with pytest.raises(ListingAlreadyAllocatedError) as exc_info:
            await svc.respond(second.id, "owner-1", ResponseDecision.ACCEPT)
        assert exc_info.value.kind == ErrorKind.CONFLICT

        # Not auto-rejected: the owner decides explicitly
        await session.refresh(second)
        assert second.status == AdoptionRequestStatus.PENDING
        rejected = await svc.respond(second.id, "owner-1", ResponseDecision.REJECT)
        assert rejected.status == AdoptionRequestStatus.REJECTED

    @pytest.mark.asyncio
    async def test_unknown_request(self, session, settings) -> None:
        with pytest.raises(AdoptionRequestNotFoundError):
            await AdoptionService(session, settings).respond(
                uuid.uuid4(), "owner-1", ResponseDecision.ACCEPT
            )


class TestReads:
    @pytest.mark.asyncio
    async def test_parties_can_read_request(self, session, settings, flow) -> None:
        pet = await flow.listing()
        adoption_request = await flow.request(pet)
        svc = AdoptionService(session, settings)

        assert (await svc.get_request(adoption_request.id, "adopter-1")).id == adoption_request.id
        assert (await svc.get_request(adoption_request.id, "owner-1")).id == adoption_request.id
        with pytest.raises(NotPartyError):
            await svc.get_request(adoption_request.id, "stranger")

    @pytest.mark.asyncio
    async def test_my_requests_by_role(self, session, settings, flow) -> None:
        pet = await flow.listing()
        await flow.request(pet, "adopter-1")
        await flow.request(pet, "adopter-2")
        svc = AdoptionService(session, settings)

        assert len(await svc.get_my_requests("adopter-1")) == 1
        assert len(await svc.get_my_requests("owner-1", as_role=ActorRole.OWNER)) == 2
        assert await svc.get_my_requests("owner-1") == []

    @pytest.mark.asyncio
    async def test_requests_for_pet_are_owner_only(self, session, settings, flow) -> None:
        pet = await flow.listing()
        await flow.request(pet)
        svc = AdoptionService(session, settings)

        assert len(await svc.get_requests_for_pet(pet.id, "owner-1")) == 1
        with pytest.raises(NotListingOwnerError):
            await svc.get_requests_for_pet(pet.id, "adopter-1")


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expire_payment_pending_request(self, session, settings, flow) -> None:
        pet, adoption_request = await flow.accepted()
        svc = AdoptionService(session, settings)

        expired = await svc.expire_request(
            adoption_request.id, AdoptionRequestStatus.PAYMENT_PENDING
        )
        await session.commit()

        assert expired is not None
        assert expired.status == AdoptionRequestStatus.CANCELLED
        assert pet.active_request_id is None
        assert pet.is_available is True

    @pytest.mark.asyncio
    async def test_expiry_skips_request_that_moved_on(self, session, settings, flow) -> None:
        _, adoption_request = await flow.accepted()
        await flow.pay(adoption_request)

        result = await AdoptionService(session, settings).expire_request(
            adoption_request.id, AdoptionRequestStatus.PAYMENT_PENDING
        )
        assert result is None
        assert adoption_request.status == AdoptionRequestStatus.PET_TRANSFER_PENDING
