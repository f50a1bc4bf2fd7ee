"""Shared plumbing for the application services.

Every service works inside the caller's AsyncSession and never commits on
its own (the payment failure path is the one documented exception). The
helpers here keep the three things every transition does in one place:
guard the move with the state machine, stamp the record, append the audit
event. Notifications are written to the outbox in the same transaction.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from rehoming_escrow.domain.enums import AggregateType, OutboxTopic
from rehoming_escrow.domain.exceptions import (
    AdoptionRequestNotFoundError,
    ListingNotFoundError,
    TransactionNotFoundError,
)
from rehoming_escrow.domain.state_machine import AdoptionRequestStateMachine, validate_transition
from rehoming_escrow.infrastructure.database.repositories import (
    AdoptionRequestRepository,
    ConfirmationRepository,
    DisputeRepository,
    EventRepository,
    OutboxRepository,
    PetRepository,
    TransactionRepository,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from rehoming_escrow.domain.enums import EventType
    from rehoming_escrow.infrastructure.database.orm_models import (
        AdoptionRequest,
        RehomingPet,
        RehomingTransaction,
    )


def utcnow() -> datetime:
    return datetime.now(UTC)


class BaseService:
    """Repositories bound to one session plus the common transition helpers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._pet_repo = PetRepository(session)
        self._request_repo = AdoptionRequestRepository(session)
        self._tx_repo = TransactionRepository(session)
        self._confirmation_repo = ConfirmationRepository(session)
        self._dispute_repo = DisputeRepository(session)
        self._event_repo = EventRepository(session)
        self._outbox_repo = OutboxRepository(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _get_pet_or_raise(
        self, pet_id: uuid.UUID, include_removed: bool = False
    ) -> RehomingPet:
        pet = await self._pet_repo.get_by_id(pet_id)
        if pet is None or (pet.is_removed and not include_removed):
            raise ListingNotFoundError(str(pet_id))
        return pet

    async def _get_request_or_raise(self, request_id: uuid.UUID) -> AdoptionRequest:
        request = await self._request_repo.get_by_id(request_id)
        if request is None:
            raise AdoptionRequestNotFoundError(str(request_id))
        return request

    async def _get_transaction_or_raise(self, transaction_id: uuid.UUID) -> RehomingTransaction:
        tx = await self._tx_repo.get_by_id(transaction_id)
        if tx is None:
            raise TransactionNotFoundError(str(transaction_id))
        return tx

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _move_request(
        self,
        request: AdoptionRequest,
        event_name: str,
        now: datetime | None = None,
    ) -> tuple[str, str]:
        """Fire a request transition in memory and return (old, new) statuses.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        old_status = request.status
        request.status = validate_transition(AdoptionRequestStateMachine, old_status, event_name)
        request.status_changed_at = now or utcnow()
        return old_status, request.status

    async def _record(
        self,
        aggregate_type: AggregateType,
        aggregate_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None,
        new_status: str | None,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._event_repo.record(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata=metadata,
        )

    async def _record_request(
        self,
        request: AdoptionRequest,
        event_type: EventType,
        statuses: tuple[str, str],
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._record(
            AggregateType.ADOPTION_REQUEST,
            request.id,
            event_type,
            statuses[0],
            statuses[1],
            actor,
            metadata,
        )

    async def _notify(self, user_id: str, event: str, data: dict | None = None) -> None:
        """Queue a notification; it is delivered only if this transaction commits."""
        await self._outbox_repo.enqueue(
            OutboxTopic.NOTIFICATION,
            aggregate_id=user_id,
            payload={"user_id": user_id, "event": event, "data": data or {}},
        )
