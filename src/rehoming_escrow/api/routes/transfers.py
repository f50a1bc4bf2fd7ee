"""Transfer confirmation REST API routes.

Routes:
    GET    /api/v1/transfers/pending    Handovers still waiting on the caller
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rehoming_escrow.api.deps import get_actor_id, get_transfer_service
from rehoming_escrow.schemas.rehoming import TransferConfirmationResponse
from rehoming_escrow.services import TransferService

router = APIRouter(prefix="/api/v1/transfers", tags=["Transfers"])


@router.get(
    "/pending",
    response_model=list[TransferConfirmationResponse],
    summary="List handovers awaiting the caller's confirmation",
)
async def list_pending_transfers(
    actor_id: str = Depends(get_actor_id),
    svc: TransferService = Depends(get_transfer_service),
) -> list[TransferConfirmationResponse]:
    confirmations = await svc.get_pending_transfers(actor_id)
    return [TransferConfirmationResponse.model_validate(c) for c in confirmations]
