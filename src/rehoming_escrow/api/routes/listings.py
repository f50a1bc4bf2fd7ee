"""Pet listing REST API routes.

Routes:
    POST   /api/v1/listings                                 Publish a listing
    GET    /api/v1/listings                                 Browse available pets
    GET    /api/v1/listings/mine                            Caller's own listings
    GET    /api/v1/listings/{pet_id}                        Listing details
    PATCH  /api/v1/listings/{pet_id}                        Edit a listing
    DELETE /api/v1/listings/{pet_id}                        Withdraw a listing
    POST   /api/v1/listings/{pet_id}/adoption-requests      Ask to adopt
    GET    /api/v1/listings/{pet_id}/adoption-requests      Owner's inbox for a pet
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves parameter annotations at runtime
from decimal import Decimal  # noqa: TC003

from fastapi import APIRouter, Depends, Query

from rehoming_escrow.api.deps import get_actor_id, get_adoption_service, get_listing_service
from rehoming_escrow.domain.enums import AdoptionType, Species
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.schemas.rehoming import (
    AdoptionRequestResponse,
    CreateAdoptionRequest,
    CreateListingRequest,
    ListingPageResponse,
    ListingResponse,
    UpdateListingRequest,
)
from rehoming_escrow.services import AdoptionService, ListingService

router = APIRouter(prefix="/api/v1/listings", tags=["Listings"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / edit / withdraw
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ListingResponse,
    status_code=201,
    summary="Publish a pet listing",
)
async def create_listing(
    request: CreateListingRequest,
    actor_id: str = Depends(get_actor_id),
    svc: ListingService = Depends(get_listing_service),
) -> ListingResponse:
    pet = await svc.create_listing(
        owner_id=actor_id,
        name=request.name,
        species=request.species,
        adoption_type=request.adoption_type,
        price=request.price,
        breed=request.breed,
        age=request.age,
        description=request.description,
        image_urls=request.image_urls,
    )
    return ListingResponse.model_validate(pet)


@router.patch(
    "/{pet_id}",
    response_model=ListingResponse,
    summary="Edit a listing",
)
async def update_listing(
    pet_id: uuid.UUID,
    request: UpdateListingRequest,
    actor_id: str = Depends(get_actor_id),
    svc: ListingService = Depends(get_listing_service),
) -> ListingResponse:
    """Apply only the fields present in the body.

    Adoption terms cannot change while a request holds the pet.
    """
    pet = await svc.update_listing(pet_id, actor_id, request.model_dump(exclude_unset=True))
    return ListingResponse.model_validate(pet)


@router.delete(
    "/{pet_id}",
    response_model=ListingResponse,
    summary="Withdraw a listing",
)
async def remove_listing(
    pet_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    svc: ListingService = Depends(get_listing_service),
) -> ListingResponse:
    pet = await svc.remove_listing(pet_id, actor_id)
    return ListingResponse.model_validate(pet)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=ListingPageResponse,
    summary="Browse available pets",
)
async def list_available(
    species: Species | None = Query(default=None),
    adoption_type: AdoptionType | None = Query(default=None),
    min_age: int | None = Query(default=None, ge=0),
    max_age: int | None = Query(default=None, ge=0),
    min_price: Decimal | None = Query(default=None, ge=0),
    max_price: Decimal | None = Query(default=None, ge=0),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    svc: ListingService = Depends(get_listing_service),
) -> ListingPageResponse:
    """Return unadopted listings that nobody holds yet, newest first."""
    items, total = await svc.list_available(
        species=species,
        adoption_type=adoption_type,
        min_age=min_age,
        max_age=max_age,
        min_price=min_price,
        max_price=max_price,
        search=search,
        page=page,
        limit=limit,
    )
    return ListingPageResponse(
        items=[ListingResponse.model_validate(p) for p in items],
        total=total,
        page=page,
        limit=limit,
    )


@router.get(
    "/mine",
    response_model=list[ListingResponse],
    summary="List the caller's own listings",
)
async def list_my_listings(
    actor_id: str = Depends(get_actor_id),
    svc: ListingService = Depends(get_listing_service),
) -> list[ListingResponse]:
    pets = await svc.list_owner_listings(actor_id)
    return [ListingResponse.model_validate(p) for p in pets]


@router.get(
    "/{pet_id}",
    response_model=ListingResponse,
    summary="Get listing details",
)
async def get_listing(
    pet_id: uuid.UUID,
    svc: ListingService = Depends(get_listing_service),
) -> ListingResponse:
    pet = await svc.get_listing(pet_id)
    return ListingResponse.model_validate(pet)


# ---------------------------------------------------------------------------
# Adoption requests for a listing
# ---------------------------------------------------------------------------


@router.post(
    "/{pet_id}/adoption-requests",
    response_model=AdoptionRequestResponse,
    status_code=201,
    summary="Request to adopt a pet",
)
async def create_adoption_request(
    pet_id: uuid.UUID,
    request: CreateAdoptionRequest,
    actor_id: str = Depends(get_actor_id),
    svc: AdoptionService = Depends(get_adoption_service),
) -> AdoptionRequestResponse:
    adoption_request = await svc.create_request(pet_id, actor_id, request.message)
    return AdoptionRequestResponse.model_validate(adoption_request)


@router.get(
    "/{pet_id}/adoption-requests",
    response_model=list[AdoptionRequestResponse],
    summary="List requests for one of the caller's listings",
)
async def list_pet_requests(
    pet_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    svc: AdoptionService = Depends(get_adoption_service),
) -> list[AdoptionRequestResponse]:
    requests = await svc.get_requests_for_pet(pet_id, actor_id)
    return [AdoptionRequestResponse.model_validate(r) for r in requests]
