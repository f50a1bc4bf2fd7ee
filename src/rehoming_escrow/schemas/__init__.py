"""Pydantic API schemas."""

from rehoming_escrow.schemas.rehoming import (
    AdoptionRequestResponse,
    ConfirmTransferRequest,
    CreateAdoptionRequest,
    CreateListingRequest,
    DisputeResponse,
    HealthResponse,
    InitiatePaymentRequest,
    ListingPageResponse,
    ListingResponse,
    OpenDisputeRequest,
    RehomingEventResponse,
    ResolveDisputeRequest,
    RespondToRequest,
    TransactionResponse,
    TransferConfirmationResponse,
    UpdateListingRequest,
)

__all__ = [
    "AdoptionRequestResponse",
    "ConfirmTransferRequest",
    "CreateAdoptionRequest",
    "CreateListingRequest",
    "DisputeResponse",
    "HealthResponse",
    "InitiatePaymentRequest",
    "ListingPageResponse",
    "ListingResponse",
    "OpenDisputeRequest",
    "RehomingEventResponse",
    "ResolveDisputeRequest",
    "RespondToRequest",
    "TransactionResponse",
    "TransferConfirmationResponse",
    "UpdateListingRequest",
]
