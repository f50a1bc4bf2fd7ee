"""Pydantic schemas for the rehoming API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API
and database layers. Caller identity never travels in a body; it comes from
the X-User-ID header.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from rehoming_escrow.domain.enums import (
    ActorRole,
    AdoptionType,
    DisputeOutcome,
    ResponseDecision,
    Species,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateListingRequest(BaseModel):
    """Request body for publishing a pet listing."""

    name: str = Field(..., min_length=1, max_length=100, examples=["Biscuit"])
    species: Species
    breed: str = Field(default="", max_length=100)
    age: int = Field(default=0, ge=0, le=40, description="Age in years")
    description: str = Field(default="", max_length=5000)
    image_urls: list[str] = Field(default_factory=list, max_length=20)
    adoption_type: AdoptionType
    price: Decimal | None = Field(
        default=None,
        gt=0,
        decimal_places=2,
        description="Required for paid listings, must be omitted for free ones",
        examples=["1000.00"],
    )


class UpdateListingRequest(BaseModel):
    """Partial update of a listing. Only the fields that are sent change."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    species: Species | None = None
    breed: str | None = Field(default=None, max_length=100)
    age: int | None = Field(default=None, ge=0, le=40)
    description: str | None = Field(default=None, max_length=5000)
    image_urls: list[str] | None = Field(default=None, max_length=20)
    adoption_type: AdoptionType | None = None
    price: Decimal | None = Field(default=None, gt=0, decimal_places=2)


class CreateAdoptionRequest(BaseModel):
    """Request body for asking to adopt a listed pet."""

    message: str | None = Field(
        default=None,
        max_length=2000,
        description="Introduction for the owner",
    )


class RespondToRequest(BaseModel):
    """Owner's decision on a pending adoption request."""

    decision: ResponseDecision


class InitiatePaymentRequest(BaseModel):
    """Adopter's payment for an accepted paid adoption."""

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Must equal the listing price",
        examples=["1000.00"],
    )


class ConfirmTransferRequest(BaseModel):
    """A party's confirmation that the pet changed hands."""

    role: ActorRole
    message: str | None = Field(default=None, max_length=2000)


class OpenDisputeRequest(BaseModel):
    """Request body for objecting to a transaction."""

    reason: str = Field(
        ...,
        min_length=10,
        max_length=2000,
        description="Detailed reason for the dispute",
    )
    evidence: str = Field(
        default="",
        max_length=10_000,
        description="Links or descriptions of supporting evidence",
    )


class ResolveDisputeRequest(BaseModel):
    """Arbitration verdict."""

    outcome: DisputeOutcome
    note: str | None = Field(default=None, max_length=5000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ListingResponse(BaseModel):
    """Response schema for a pet listing."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: str
    name: str
    species: str
    breed: str
    age: int
    description: str
    image_urls: list[str]
    adoption_type: str
    price: Decimal | None
    is_verified: bool
    is_adopted: bool
    is_available: bool
    active_request_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class ListingPageResponse(BaseModel):
    """One page of browsable listings."""

    items: list[ListingResponse]
    total: int
    page: int
    limit: int


class AdoptionRequestResponse(BaseModel):
    """Response schema for an adoption request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    pet_id: uuid.UUID
    adopter_id: str
    message: str | None
    status: str
    status_changed_at: datetime
    payment_attempts: int
    created_at: datetime
    updated_at: datetime


class TransactionResponse(BaseModel):
    """Response schema for an escrow transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    adoption_request_id: uuid.UUID
    pet_id: uuid.UUID
    from_user: str
    to_user: str
    amount: Decimal
    fee_rate: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    status: str
    escrow_status: str | None
    dispute_status: str
    failure_reason: str | None
    refund_reason: str | None
    held_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    created_at: datetime


class TransferConfirmationResponse(BaseModel):
    """Response schema for the handover confirmation of a request."""

    model_config = ConfigDict(from_attributes=True)

    adoption_request_id: uuid.UUID
    transaction_id: uuid.UUID | None
    owner_id: str
    adopter_id: str
    owner_confirmed: bool
    adopter_confirmed: bool
    owner_confirmed_at: datetime | None
    adopter_confirmed_at: datetime | None
    release_requested_at: datetime | None


class DisputeResponse(BaseModel):
    """Response schema for a dispute."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    opened_by: str
    reason: str
    evidence: str
    status: str
    outcome: str | None
    resolution_note: str | None
    arbitration_ref: str | None
    opened_at: datetime
    resolved_at: datetime | None


class RehomingEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    aggregate_type: str
    aggregate_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str | None
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
