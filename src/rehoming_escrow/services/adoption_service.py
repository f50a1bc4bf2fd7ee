"""Adoption Request Ledger: requests, owner decisions and expiry.

Allocation rule: a pet is held by at most one request in the active set
(accepted .. pet_transfer_pending). Acceptance writes the request id into
``RehomingPet.active_request_id``; because the pet row is versioned, two
acceptances racing on the same pet cannot both commit, and the partial
unique index on adoption_requests(pet_id) catches anything that slips past.

Accepting one request leaves the other pending requests untouched; the owner
rejects them explicitly, or accepts another one after the first is cancelled.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from rehoming_escrow.config import Settings, get_settings
from rehoming_escrow.domain.enums import (
    ActorRole,
    AdoptionRequestStatus,
    AdoptionType,
    AggregateType,
    EventType,
    ResponseDecision,
)
from rehoming_escrow.domain.exceptions import (
    DuplicateAdoptionRequestError,
    ListingAlreadyAdoptedError,
    ListingAlreadyAllocatedError,
    NotListingOwnerError,
    NotPartyError,
    OwnListingRequestError,
)
from rehoming_escrow.domain.state_machine import AdoptionRequestStateMachine, validate_transition
from rehoming_escrow.infrastructure.database.orm_models import (
    AdoptionRequest,
    TransferConfirmation,
)
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.services.base import BaseService, utcnow

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class AdoptionService(BaseService):
    """Manages adoption requests from creation to the owner's decision."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        super().__init__(session)
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Request creation
    # ------------------------------------------------------------------

    async def create_request(
        self,
        pet_id: uuid.UUID,
        adopter_id: str,
        message: str | None = None,
    ) -> AdoptionRequest:
        """File a pending request on an available listing.

        The listing row is claimed in the same flush, so an edit or removal
        that read the listing before this request existed loses its version
        check, and vice versa.
        """
        pet = await self._get_pet_or_raise(pet_id)
        if pet.owner_id == adopter_id:
            raise OwnListingRequestError(str(pet_id))
        if pet.is_adopted:
            raise ListingAlreadyAdoptedError(str(pet_id))

        existing = await self._request_repo.find_open_for_adopter(pet.id, adopter_id)
        if existing is not None:
            raise DuplicateAdoptionRequestError(str(pet_id), adopter_id)

        request = AdoptionRequest(
            pet_id=pet.id,
            adopter_id=adopter_id,
            message=message,
            status=AdoptionRequestStatus.PENDING.value,
            status_changed_at=utcnow(),
            payment_attempts=0,
        )
        self._session.add(request)
        await self._pet_repo.claim(pet)

        await self._record_request(
            request,
            EventType.REQUEST_CREATED,
            (None, AdoptionRequestStatus.PENDING),
            actor=adopter_id,
        )
        await self._notify(
            pet.owner_id,
            "adoption_request.received",
            {"request_id": str(request.id), "pet_id": str(pet.id), "pet_name": pet.name},
        )

        logger.info(
            "adoption.request_created",
            request_id=str(request.id),
            pet_id=str(pet.id),
            adopter_id=adopter_id,
        )
        return request

    # ------------------------------------------------------------------
    # Owner decision
    # ------------------------------------------------------------------

    async def respond(
        self,
        request_id: uuid.UUID,
        owner_id: str,
        decision: ResponseDecision,
    ) -> AdoptionRequest:
        """Accept or reject a pending request.

        Acceptance of a free listing opens the handover confirmation straight
        away; a paid listing moves to payment_pending and waits for the adopter.
        """
        request = await self._get_request_or_raise(request_id)
        pet = await self._get_pet_or_raise(request.pet_id, include_removed=True)
        if pet.owner_id != owner_id:
            raise NotListingOwnerError(str(pet.id), owner_id)

        if ResponseDecision(decision) == ResponseDecision.REJECT:
            statuses = self._move_request(request, "reject_request")
            await self._request_repo.save(request)
            await self._record_request(request, EventType.REQUEST_REJECTED, statuses, owner_id)
            await self._notify(
                request.adopter_id,
                "adoption_request.rejected",
                {"request_id": str(request.id), "pet_id": str(pet.id)},
            )
            logger.info("adoption.request_rejected", request_id=str(request.id))
            return request

        is_free = pet.adoption_type == AdoptionType.FREE
        event_name = "accept_free" if is_free else "accept_paid"
        validate_transition(AdoptionRequestStateMachine, request.status, event_name)

        if pet.is_adopted:
            raise ListingAlreadyAdoptedError(str(pet.id))
        if pet.active_request_id is not None:
            raise ListingAlreadyAllocatedError(str(pet.id), str(pet.active_request_id))
        holder = await self._request_repo.find_active_for_pet(pet.id)
        if holder is not None and holder.id != request.id:
            raise ListingAlreadyAllocatedError(str(pet.id), str(holder.id))

        statuses = self._move_request(request, event_name)
        pet.active_request_id = request.id
        rows: list[object] = [request, pet]
        if is_free:
            rows.append(
                TransferConfirmation(
                    adoption_request_id=request.id,
                    transaction_id=None,
                    owner_id=pet.owner_id,
                    adopter_id=request.adopter_id,
                    owner_confirmed=False,
                    adopter_confirmed=False,
                )
            )
        await self._request_repo.save(*rows)

        await self._record_request(
            request,
            EventType.REQUEST_ACCEPTED,
            statuses,
            owner_id,
            metadata={"adoption_type": pet.adoption_type},
        )
        await self._notify(
            request.adopter_id,
            "adoption_request.accepted",
            {
                "request_id": str(request.id),
                "pet_id": str(pet.id),
                "next_step": "confirm_handover" if is_free else "payment",
                "price": str(pet.price) if pet.price is not None else None,
            },
        )

        logger.info(
            "adoption.request_accepted",
            request_id=str(request.id),
            pet_id=str(pet.id),
            new_status=request.status,
        )
        return request

    # ------------------------------------------------------------------
    # Expiry (driven by the maintenance cycle)
    # ------------------------------------------------------------------

    async def find_expired_requests(self, now: datetime | None = None) -> list[AdoptionRequest]:
        """Requests whose payment or handover window has lapsed."""
        now = now or utcnow()
        payment_cutoff = now - timedelta(days=self._settings.payment_timeout_days)
        handover_cutoff = now - timedelta(days=self._settings.handover_timeout_days)

        unpaid = await self._request_repo.get_stale(
            AdoptionRequestStatus.PAYMENT_PENDING, payment_cutoff
        )
        unclaimed = await self._request_repo.get_stale(
            AdoptionRequestStatus.ACCEPTED, handover_cutoff
        )
        return unpaid + unclaimed

    async def expire_request(
        self,
        request_id: uuid.UUID,
        expected_status: AdoptionRequestStatus,
        now: datetime | None = None,
    ) -> AdoptionRequest | None:
        """Cancel a lapsed request and free its pet.

        Returns None (and changes nothing) if the request has moved on since
        it was selected for expiry.
        """
        request = await self._get_request_or_raise(request_id)
        if request.status != expected_status:
            logger.info(
                "adoption.expiry_skipped",
                request_id=str(request_id),
                status=request.status,
            )
            return None

        pet = await self._get_pet_or_raise(request.pet_id, include_removed=True)
        statuses = self._move_request(request, "cancel_request", now=now)
        rows: list[object] = [request]
        if pet.active_request_id == request.id:
            pet.active_request_id = None
            rows.append(pet)
        await self._request_repo.save(*rows)

        await self._record_request(
            request,
            EventType.REQUEST_CANCELLED,
            statuses,
            "SYSTEM",
            metadata={"reason": f"{expected_status}_timeout"},
        )
        for user_id in (request.adopter_id, pet.owner_id):
            await self._notify(
                user_id,
                "adoption_request.expired",
                {"request_id": str(request.id), "pet_id": str(pet.id)},
            )

        logger.info(
            "adoption.request_expired",
            request_id=str(request.id),
            previous_status=statuses[0],
        )
        return request

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_request(self, request_id: uuid.UUID, actor_id: str) -> AdoptionRequest:
        """Fetch a request visible to its adopter or the pet owner."""
        request = await self._get_request_or_raise(request_id)
        if request.adopter_id != actor_id:
            pet = await self._get_pet_or_raise(request.pet_id, include_removed=True)
            if pet.owner_id != actor_id:
                raise NotPartyError(str(request_id), actor_id)
        return request

    async def get_requests_for_pet(
        self, pet_id: uuid.UUID, owner_id: str
    ) -> list[AdoptionRequest]:
        pet = await self._get_pet_or_raise(pet_id, include_removed=True)
        if pet.owner_id != owner_id:
            raise NotListingOwnerError(str(pet_id), owner_id)
        return await self._request_repo.get_by_pet(pet.id)

    async def get_my_requests(
        self, actor_id: str, as_role: ActorRole = ActorRole.ADOPTER
    ) -> list[AdoptionRequest]:
        """Requests the actor sent (adopter) or received (owner)."""
        if ActorRole(as_role) == ActorRole.OWNER:
            return await self._request_repo.get_by_owner(actor_id)
        return await self._request_repo.get_by_adopter(actor_id)
