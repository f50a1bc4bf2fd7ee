"""Adoption request REST API routes.

Routes:
    GET    /api/v1/adoption-requests                 Caller's requests (as adopter or owner)
    GET    /api/v1/adoption-requests/{id}            Request details
    POST   /api/v1/adoption-requests/{id}/respond    Owner accepts or rejects
    POST   /api/v1/adoption-requests/{id}/payment    Adopter pays into escrow
    POST   /api/v1/adoption-requests/{id}/handover   Free adoption handover confirmation
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves parameter annotations at runtime

from fastapi import APIRouter, Depends, Header, Query

from rehoming_escrow.api.deps import (
    get_actor_id,
    get_adoption_service,
    get_escrow_service,
    get_transfer_service,
)
from rehoming_escrow.domain.enums import ActorRole
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.schemas.rehoming import (
    AdoptionRequestResponse,
    ConfirmTransferRequest,
    InitiatePaymentRequest,
    RespondToRequest,
    TransactionResponse,
    TransferConfirmationResponse,
)
from rehoming_escrow.services import AdoptionService, EscrowService, TransferService

router = APIRouter(prefix="/api/v1/adoption-requests", tags=["Adoption Requests"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[AdoptionRequestResponse],
    summary="List the caller's adoption requests",
)
async def list_my_requests(
    as_role: ActorRole = Query(default=ActorRole.ADOPTER),
    actor_id: str = Depends(get_actor_id),
    svc: AdoptionService = Depends(get_adoption_service),
) -> list[AdoptionRequestResponse]:
    """Requests the caller sent (adopter) or received on their listings (owner)."""
    requests = await svc.get_my_requests(actor_id, as_role=as_role)
    return [AdoptionRequestResponse.model_validate(r) for r in requests]


@router.get(
    "/{request_id}",
    response_model=AdoptionRequestResponse,
    summary="Get adoption request details",
)
async def get_request(
    request_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    svc: AdoptionService = Depends(get_adoption_service),
) -> AdoptionRequestResponse:
    adoption_request = await svc.get_request(request_id, actor_id)
    return AdoptionRequestResponse.model_validate(adoption_request)


# ---------------------------------------------------------------------------
# Respond
# ---------------------------------------------------------------------------


@router.post(
    "/{request_id}/respond",
    response_model=AdoptionRequestResponse,
    summary="Accept or reject a request",
)
async def respond(
    request_id: uuid.UUID,
    request: RespondToRequest,
    actor_id: str = Depends(get_actor_id),
    svc: AdoptionService = Depends(get_adoption_service),
) -> AdoptionRequestResponse:
    """Owner decision. pending -> payment_pending (paid) | accepted (free) | rejected."""
    adoption_request = await svc.respond(request_id, actor_id, request.decision)
    return AdoptionRequestResponse.model_validate(adoption_request)


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


@router.post(
    "/{request_id}/payment",
    response_model=TransactionResponse,
    status_code=201,
    summary="Pay into escrow",
)
async def initiate_payment(
    request_id: uuid.UUID,
    request: InitiatePaymentRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    actor_id: str = Depends(get_actor_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionResponse:
    """Authorize and capture the listing price; funds are held until handover."""
    tx = await svc.initiate_payment(
        request_id, actor_id, request.amount, idempotency_key=idempotency_key
    )
    return TransactionResponse.model_validate(tx)


# ---------------------------------------------------------------------------
# Free handover
# ---------------------------------------------------------------------------


@router.post(
    "/{request_id}/handover",
    response_model=TransferConfirmationResponse,
    summary="Confirm a free adoption handover",
)
async def confirm_handover(
    request_id: uuid.UUID,
    request: ConfirmTransferRequest,
    actor_id: str = Depends(get_actor_id),
    svc: TransferService = Depends(get_transfer_service),
) -> TransferConfirmationResponse:
    """Once both parties confirm, the request completes and the pet is adopted."""
    confirmation = await svc.confirm_handover(request_id, actor_id, request.role, request.message)
    return TransferConfirmationResponse.model_validate(confirmation)
