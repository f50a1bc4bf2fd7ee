"""Transfer Confirmation Coordinator.

Records the owner's and the adopter's independent confirmations that the pet
changed hands. For paid adoptions it decides *when* funds may be released and
queues an ``escrow.release_requested`` outbox message; the release itself is
performed by EscrowService when the dispatcher delivers that message. For free
adoptions the second confirmation completes the adoption directly.

Repeated confirmations are no-ops. The confirmation row is versioned, so when
both parties confirm at the same moment one of them gets ConcurrentUpdateError
and the release request is queued exactly once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rehoming_escrow.domain.enums import (
    ActorRole,
    AdoptionRequestStatus,
    AdoptionType,
    AggregateType,
    DisputeStatus,
    EventType,
    OutboxStatus,
    OutboxTopic,
    TransactionStatus,
)
from rehoming_escrow.domain.exceptions import InvalidStateTransitionError, NotPartyError
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.services.base import BaseService, utcnow

if TYPE_CHECKING:
    import uuid

    from rehoming_escrow.infrastructure.database.orm_models import (
        RehomingTransaction,
        TransferConfirmation,
    )

logger = get_logger(__name__)


def _has_confirmed(confirmation: TransferConfirmation, role: ActorRole) -> bool:
    if role == ActorRole.OWNER:
        return confirmation.owner_confirmed
    return confirmation.adopter_confirmed


def _set_confirmed(
    confirmation: TransferConfirmation,
    role: ActorRole,
    message: str | None,
) -> None:
    now = utcnow()
    if role == ActorRole.OWNER:
        confirmation.owner_confirmed = True
        confirmation.owner_confirmed_at = now
        confirmation.owner_message = message
    else:
        confirmation.adopter_confirmed = True
        confirmation.adopter_confirmed_at = now
        confirmation.adopter_message = message


class TransferService(BaseService):
    """Dual confirmation of the physical pet handover."""

    async def confirm(
        self,
        transaction_id: uuid.UUID,
        actor_id: str,
        role: ActorRole,
        message: str | None = None,
    ) -> TransferConfirmation:
        """Confirm the handover of a paid adoption.

        Raises:
            NotPartyError: The actor is not the transaction's party for ``role``.
            InvalidStateTransitionError: Funds are not held or the request is
                not awaiting the transfer.
        """
        role = ActorRole(role)
        tx = await self._get_transaction_or_raise(transaction_id)
        party = tx.to_user if role == ActorRole.OWNER else tx.from_user
        if actor_id != party:
            raise NotPartyError(str(transaction_id), actor_id, role=role.value)

        confirmation = await self._confirmation_repo.get_by_transaction(tx.id)
        if confirmation is not None and _has_confirmed(confirmation, role):
            logger.info(
                "transfer.already_confirmed", transaction_id=str(tx.id), role=role.value
            )
            return confirmation

        request = await self._get_request_or_raise(tx.adoption_request_id)
        if (
            tx.status != TransactionStatus.HELD
            or request.status != AdoptionRequestStatus.PET_TRANSFER_PENDING
        ):
            raise InvalidStateTransitionError(
                f"{tx.status}/{request.status}", "confirm_transfer", entity="transfer"
            )
        if confirmation is None:
            raise InvalidStateTransitionError(tx.status, "confirm_transfer", entity="transfer")

        _set_confirmed(confirmation, role, message)

        release_due = (
            confirmation.both_confirmed
            and confirmation.release_requested_at is None
            and tx.dispute_status != DisputeStatus.OPEN
        )
        if release_due:
            confirmation.release_requested_at = utcnow()
        await self._confirmation_repo.save(confirmation)

        await self._record(
            AggregateType.TRANSACTION,
            tx.id,
            EventType.TRANSFER_CONFIRMED,
            None,
            None,
            actor_id,
            metadata={"role": role.value},
        )

        if release_due:
            await self._outbox_repo.enqueue(
                OutboxTopic.RELEASE_REQUESTED,
                aggregate_id=tx.id,
                payload={"transaction_id": str(tx.id), "requested_by": actor_id},
            )
            await self._record(
                AggregateType.TRANSACTION,
                tx.id,
                EventType.RELEASE_REQUESTED,
                None,
                None,
                "SYSTEM",
            )
            logger.info("transfer.release_requested", transaction_id=str(tx.id))
        elif not confirmation.both_confirmed:
            counterparty = tx.from_user if role == ActorRole.OWNER else tx.to_user
            await self._notify(
                counterparty,
                "transfer.confirmation_requested",
                {"transaction_id": str(tx.id), "confirmed_by": role.value},
            )

        logger.info(
            "transfer.confirmed",
            transaction_id=str(tx.id),
            role=role.value,
            both_confirmed=confirmation.both_confirmed,
        )
        return confirmation

    async def confirm_handover(
        self,
        request_id: uuid.UUID,
        actor_id: str,
        role: ActorRole,
        message: str | None = None,
    ) -> TransferConfirmation:
        """Confirm the handover of a free adoption; the second confirmation completes it."""
        role = ActorRole(role)
        request = await self._get_request_or_raise(request_id)
        pet = await self._get_pet_or_raise(request.pet_id, include_removed=True)
        party = pet.owner_id if role == ActorRole.OWNER else request.adopter_id
        if actor_id != party:
            raise NotPartyError(str(request_id), actor_id, role=role.value)

        if pet.adoption_type != AdoptionType.FREE:
            raise InvalidStateTransitionError(request.status, "confirm_handover", entity="transfer")

        confirmation = await self._confirmation_repo.get_by_request(request.id)
        if confirmation is None:
            raise InvalidStateTransitionError(request.status, "confirm_handover", entity="transfer")

        if _has_confirmed(confirmation, role):
            logger.info(
                "transfer.already_confirmed", request_id=str(request.id), role=role.value
            )
            return confirmation
        if request.status != AdoptionRequestStatus.ACCEPTED:
            raise InvalidStateTransitionError(request.status, "confirm_handover", entity="transfer")

        _set_confirmed(confirmation, role, message)

        rows: list[object] = [confirmation]
        statuses = None
        if confirmation.both_confirmed:
            statuses = self._move_request(request, "handover_completed")
            pet.is_adopted = True
            rows += [request, pet]
        await self._confirmation_repo.save(*rows)

        await self._record(
            AggregateType.ADOPTION_REQUEST,
            request.id,
            EventType.TRANSFER_CONFIRMED,
            None,
            None,
            actor_id,
            metadata={"role": role.value},
        )
        if statuses is not None:
            await self._record_request(request, EventType.REQUEST_COMPLETED, statuses, actor_id)
            await self._record(
                AggregateType.PET,
                pet.id,
                EventType.PET_ADOPTED,
                None,
                None,
                actor_id,
                metadata={"request_id": str(request.id), "adopter_id": request.adopter_id},
            )
            for user_id in (pet.owner_id, request.adopter_id):
                await self._notify(
                    user_id,
                    "adoption.completed",
                    {"request_id": str(request.id), "pet_id": str(pet.id)},
                )
            logger.info("transfer.free_adoption_completed", request_id=str(request.id))
        else:
            counterparty = request.adopter_id if role == ActorRole.OWNER else pet.owner_id
            await self._notify(
                counterparty,
                "transfer.confirmation_requested",
                {"request_id": str(request.id), "confirmed_by": role.value},
            )

        logger.info(
            "transfer.handover_confirmed",
            request_id=str(request.id),
            role=role.value,
            both_confirmed=confirmation.both_confirmed,
        )
        return confirmation

    async def get_pending_transfers(self, actor_id: str) -> list[TransferConfirmation]:
        """Live handovers still waiting on this user's confirmation."""
        return await self._confirmation_repo.get_pending_for_user(actor_id)

    # ------------------------------------------------------------------
    # Stalled releases
    # ------------------------------------------------------------------

    async def find_stalled_releases(self) -> list[RehomingTransaction]:
        """Held, fully confirmed transactions whose release request the outbox gave up on."""
        stalled = []
        for tx in await self._tx_repo.get_held_since_before(utcnow()):
            if tx.dispute_status == DisputeStatus.OPEN:
                continue
            confirmation = await self._confirmation_repo.get_by_transaction(tx.id)
            if confirmation is None or not confirmation.both_confirmed:
                continue
            releases = await self._outbox_repo.get_by_aggregate(
                tx.id, OutboxTopic.RELEASE_REQUESTED
            )
            statuses = {message.status for message in releases}
            if OutboxStatus.FAILED in statuses and OutboxStatus.PENDING not in statuses:
                stalled.append(tx)
        return stalled

    async def requeue_release(self, transaction_id: uuid.UUID, actor: str = "SYSTEM") -> bool:
        """Queue a fresh release request for a held, fully confirmed transaction.

        Returns False when nothing is queued: the funds left escrow, a dispute
        froze them, or a release request is still pending. The confirmation
        row is claimed, so two concurrent requeues queue one message.
        """
        tx = await self._get_transaction_or_raise(transaction_id)
        if tx.status != TransactionStatus.HELD or tx.dispute_status == DisputeStatus.OPEN:
            return False
        confirmation = await self._confirmation_repo.get_by_transaction(tx.id)
        if confirmation is None or not confirmation.both_confirmed:
            return False
        releases = await self._outbox_repo.get_by_aggregate(tx.id, OutboxTopic.RELEASE_REQUESTED)
        if any(message.status == OutboxStatus.PENDING for message in releases):
            return False

        confirmation.release_requested_at = utcnow()
        await self._confirmation_repo.save(confirmation)
        await self._outbox_repo.enqueue(
            OutboxTopic.RELEASE_REQUESTED,
            aggregate_id=tx.id,
            payload={"transaction_id": str(tx.id), "requested_by": actor},
        )
        await self._record(
            AggregateType.TRANSACTION,
            tx.id,
            EventType.RELEASE_REQUESTED,
            None,
            None,
            actor,
            metadata={"requeued": True, "previous_requests": len(releases)},
        )
        logger.warning(
            "transfer.release_requeued",
            transaction_id=str(tx.id),
            previous_requests=len(releases),
        )
        return True
