"""Listing Store: owner-managed pet listings.

Listings are soft-deleted and never hard-deleted: requests and transactions
keep pointing at them for the audit trail. The adoption flags
(``is_adopted``, ``active_request_id``) are owned by the workflow services
and cannot be edited here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rehoming_escrow.domain.enums import AdoptionType, AggregateType, EventType, Species
from rehoming_escrow.domain.exceptions import (
    InvalidListingError,
    ListingAlreadyAdoptedError,
    ListingLockedError,
    NotListingOwnerError,
)
from rehoming_escrow.domain.money import to_money
from rehoming_escrow.infrastructure.database.orm_models import RehomingPet
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.services.base import BaseService

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset(
    {"name", "species", "breed", "age", "description", "image_urls", "adoption_type", "price"}
)
_TERMS_FIELDS = frozenset({"adoption_type", "price"})


def _check_terms(adoption_type: str, price: Decimal | None) -> Decimal | None:
    """Validate the price/adoption type pairing and normalize the price."""
    if adoption_type == AdoptionType.PAID:
        if price is None:
            raise InvalidListingError("A paid listing requires a price")
        price = to_money(price)
        if price <= 0:
            raise InvalidListingError("A paid listing requires a positive price")
        return price
    if price is not None:
        raise InvalidListingError("A free listing cannot have a price")
    return None


class ListingService(BaseService):
    """Create, edit, remove and browse pet listings."""

    async def create_listing(
        self,
        owner_id: str,
        name: str,
        species: Species,
        adoption_type: AdoptionType,
        price: Decimal | None = None,
        breed: str = "",
        age: int = 0,
        description: str = "",
        image_urls: list[str] | None = None,
    ) -> RehomingPet:
        """Publish a new listing."""
        price = _check_terms(AdoptionType(adoption_type), price)
        pet = RehomingPet(
            owner_id=owner_id,
            name=name,
            species=Species(species).value,
            breed=breed,
            age=age,
            description=description,
            image_urls=list(image_urls or []),
            adoption_type=AdoptionType(adoption_type).value,
            price=price,
            is_verified=False,
            is_adopted=False,
            is_removed=False,
        )
        await self._pet_repo.save(pet)

        await self._record(
            AggregateType.PET,
            pet.id,
            EventType.LISTING_CREATED,
            None,
            None,
            actor=owner_id,
            metadata={"adoption_type": pet.adoption_type, "price": str(price) if price else None},
        )

        logger.info(
            "listing.created",
            pet_id=str(pet.id),
            owner_id=owner_id,
            adoption_type=pet.adoption_type,
        )
        return pet

    async def update_listing(
        self,
        pet_id: uuid.UUID,
        owner_id: str,
        changes: dict[str, Any],
    ) -> RehomingPet:
        """Apply owner edits.

        Adoption terms (type and price) are frozen while a request holds the
        pet, so the adopter always pays the price they were accepted at.
        """
        pet = await self._get_pet_or_raise(pet_id)
        if pet.owner_id != owner_id:
            raise NotListingOwnerError(str(pet_id), owner_id)
        if pet.is_adopted:
            raise ListingAlreadyAdoptedError(str(pet_id))

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidListingError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        if _TERMS_FIELDS & set(changes) and pet.active_request_id is not None:
            raise ListingLockedError(
                str(pet_id), "adoption terms cannot change while a request is accepted"
            )

        adoption_type = AdoptionType(changes.get("adoption_type", pet.adoption_type))
        if "price" in changes:
            price = changes["price"]
        elif adoption_type == AdoptionType.FREE:
            price = None
        else:
            price = pet.price
        changes = {
            **changes,
            "adoption_type": adoption_type.value,
            "price": _check_terms(adoption_type, price),
        }
        if "species" in changes:
            changes["species"] = Species(changes["species"]).value

        for field, value in changes.items():
            setattr(pet, field, value)
        await self._pet_repo.save(pet)

        await self._record(
            AggregateType.PET,
            pet.id,
            EventType.LISTING_UPDATED,
            None,
            None,
            actor=owner_id,
            metadata={"fields": sorted(k for k in changes if k in EDITABLE_FIELDS)},
        )
        logger.info("listing.updated", pet_id=str(pet_id), fields=sorted(changes))
        return pet

    async def remove_listing(self, pet_id: uuid.UUID, owner_id: str) -> RehomingPet:
        """Soft-delete a listing that nobody is waiting on."""
        pet = await self._get_pet_or_raise(pet_id)
        if pet.owner_id != owner_id:
            raise NotListingOwnerError(str(pet_id), owner_id)

        open_requests = await self._request_repo.count_non_terminal_for_pet(pet.id)
        if open_requests:
            raise ListingLockedError(
                str(pet_id), f"{open_requests} adoption request(s) are still open"
            )

        pet.is_removed = True
        await self._pet_repo.save(pet)

        await self._record(
            AggregateType.PET, pet.id, EventType.LISTING_REMOVED, None, None, actor=owner_id
        )
        logger.info("listing.removed", pet_id=str(pet_id))
        return pet

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_listing(self, pet_id: uuid.UUID) -> RehomingPet:
        return await self._get_pet_or_raise(pet_id)

    async def list_available(
        self,
        species: Species | None = None,
        adoption_type: AdoptionType | None = None,
        min_age: int | None = None,
        max_age: int | None = None,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[RehomingPet], int]:
        """Browse listings that can still be requested."""
        page = max(page, 1)
        return await self._pet_repo.search_available(
            species=species,
            adoption_type=adoption_type,
            min_age=min_age,
            max_age=max_age,
            min_price=min_price,
            max_price=max_price,
            search=search.strip() if search else None,
            offset=(page - 1) * limit,
            limit=limit,
        )

    async def list_owner_listings(self, owner_id: str) -> list[RehomingPet]:
        return await self._pet_repo.get_by_owner(owner_id)
