"""Escrow transaction REST API routes.

Routes:
    GET    /api/v1/transactions                          Caller's transactions
    GET    /api/v1/transactions/{id}                     Transaction details
    GET    /api/v1/transactions/{id}/events              Audit trail
    POST   /api/v1/transactions/{id}/confirm-transfer    Party confirms the handover
    POST   /api/v1/transactions/{id}/dispute             Open a dispute
    GET    /api/v1/transactions/{id}/dispute             Dispute details
    POST   /api/v1/transactions/{id}/dispute/resolve     Arbitration verdict

Release of held funds is never a direct call: the second confirmation queues a
release request in the outbox, and the dispatcher is kicked as a background
task once the confirmation has been committed.
"""

from __future__ import annotations

import secrets
import uuid  # noqa: TC003 - FastAPI resolves parameter annotations at runtime

from fastapi import APIRouter, BackgroundTasks, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: TC002

from rehoming_escrow.api.deps import (
    get_actor_id,
    get_app_settings,
    get_db_session,
    get_db_session_factory,
    get_dispute_service,
    get_escrow_service,
    get_notifier,
    get_payment_gateway,
    get_transfer_service,
)
from rehoming_escrow.config import Settings  # noqa: TC001
from rehoming_escrow.domain.exceptions import InvalidArbitrationKeyError
from rehoming_escrow.domain.ports import Notifier, PaymentGateway  # noqa: TC001
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.orchestration.dispatcher import dispatch_outbox
from rehoming_escrow.schemas.rehoming import (
    ConfirmTransferRequest,
    DisputeResponse,
    OpenDisputeRequest,
    RehomingEventResponse,
    ResolveDisputeRequest,
    TransactionResponse,
    TransferConfirmationResponse,
)
from rehoming_escrow.services import DisputeService, EscrowService, TransferService

router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])
logger = get_logger(__name__)


def require_arbitration_key(
    x_arbitration_key: str | None = Header(default=None, alias="X-Arbitration-Key"),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Only the arbitration process may resolve disputes."""
    expected = settings.arbitration_api_key
    if not expected or not x_arbitration_key:
        raise InvalidArbitrationKeyError()
    if not secrets.compare_digest(x_arbitration_key, expected):
        raise InvalidArbitrationKeyError()


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[TransactionResponse],
    summary="List the caller's transactions",
)
async def list_my_transactions(
    actor_id: str = Depends(get_actor_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[TransactionResponse]:
    transactions = await svc.get_my_transactions(actor_id)
    return [TransactionResponse.model_validate(tx) for tx in transactions]


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get transaction details",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> TransactionResponse:
    tx = await svc.get_transaction(transaction_id, actor_id)
    return TransactionResponse.model_validate(tx)


@router.get(
    "/{transaction_id}/events",
    response_model=list[RehomingEventResponse],
    summary="Get audit trail",
)
async def get_events(
    transaction_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    svc: EscrowService = Depends(get_escrow_service),
) -> list[RehomingEventResponse]:
    """Events of the transaction, its adoption request and its dispute, oldest first."""
    events = await svc.get_events(transaction_id, actor_id)
    return [RehomingEventResponse.model_validate(e) for e in events]


# ---------------------------------------------------------------------------
# Transfer confirmation
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/confirm-transfer",
    response_model=TransferConfirmationResponse,
    summary="Confirm the pet changed hands",
)
async def confirm_transfer(
    transaction_id: uuid.UUID,
    request: ConfirmTransferRequest,
    background_tasks: BackgroundTasks,
    actor_id: str = Depends(get_actor_id),
    session: AsyncSession = Depends(get_db_session),
    svc: TransferService = Depends(get_transfer_service),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
) -> TransferConfirmationResponse:
    confirmation = await svc.confirm(transaction_id, actor_id, request.role, request.message)
    await session.commit()

    background_tasks.add_task(dispatch_outbox, session_factory, gateway, notifier, settings)
    return TransferConfirmationResponse.model_validate(confirmation)


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/dispute",
    response_model=DisputeResponse,
    status_code=201,
    summary="Open a dispute",
)
async def open_dispute(
    transaction_id: uuid.UUID,
    request: OpenDisputeRequest,
    actor_id: str = Depends(get_actor_id),
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    """Freeze the held funds and hand the case to arbitration."""
    dispute = await svc.open(transaction_id, actor_id, request.reason, request.evidence)
    return DisputeResponse.model_validate(dispute)


@router.get(
    "/{transaction_id}/dispute",
    response_model=DisputeResponse,
    summary="Get dispute details",
)
async def get_dispute(
    transaction_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await svc.get_dispute(transaction_id, actor_id)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{transaction_id}/dispute/resolve",
    response_model=DisputeResponse,
    summary="Resolve a dispute (arbitration only)",
    dependencies=[Depends(require_arbitration_key)],
)
async def resolve_dispute(
    transaction_id: uuid.UUID,
    request: ResolveDisputeRequest,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    """favor_adopter refunds held funds, favor_owner releases them."""
    dispute = await svc.resolve(transaction_id, request.outcome, request.note)
    return DisputeResponse.model_validate(dispute)
