"""Dispute Manager: objections against a transaction and their arbitration.

A dispute can be opened by either party while funds are held (it freezes
release) or after release (a post-adoption complaint). One dispute per
transaction. The verdict comes from human arbitration:

    favor_adopter + funds held    -> refund to the adopter
    favor_owner   + funds held    -> release to the owner (no confirmations needed)
    any outcome   + funds settled -> recorded only, no money moves
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rehoming_escrow.domain.enums import (
    AggregateType,
    DisputeOutcome,
    DisputeStatus,
    EscrowStatus,
    EventType,
    TransactionStatus,
)
from rehoming_escrow.domain.exceptions import (
    ArbitrationUnavailableError,
    DisputeAlreadyExistsError,
    DisputeNotFoundError,
    InvalidStateTransitionError,
    NotPartyError,
)
from rehoming_escrow.domain.state_machine import DisputeStateMachine, validate_transition
from rehoming_escrow.infrastructure.database.orm_models import Dispute
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.services.base import BaseService, utcnow
from rehoming_escrow.services.escrow_service import EscrowService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from rehoming_escrow.config import Settings
    from rehoming_escrow.domain.ports import ArbitrationService, PaymentGateway

logger = get_logger(__name__)

_DISPUTABLE_STATUSES = (TransactionStatus.HELD, TransactionStatus.COMPLETED)


class DisputeService(BaseService):
    """Opens disputes and applies arbitration verdicts."""

    def __init__(
        self,
        session: AsyncSession,
        arbitration: ArbitrationService,
        gateway: PaymentGateway,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(session)
        self._arbitration = arbitration
        self._escrow = EscrowService(session, gateway, settings)

    async def open(
        self,
        transaction_id: uuid.UUID,
        actor_id: str,
        reason: str,
        evidence: str = "",
    ) -> Dispute:
        """Open a dispute and hand the case to arbitration.

        Raises:
            NotPartyError: The actor is neither the adopter nor the owner.
            InvalidStateTransitionError: No funds were ever held.
            DisputeAlreadyExistsError: A dispute is already open or resolved.
            ArbitrationUnavailableError: The case could not be submitted.
        """
        tx = await self._get_transaction_or_raise(transaction_id)
        if actor_id not in (tx.from_user, tx.to_user):
            raise NotPartyError(str(transaction_id), actor_id)
        if tx.status not in _DISPUTABLE_STATUSES:
            raise InvalidStateTransitionError(tx.status, "open_dispute", entity="transaction")
        if tx.dispute_status != DisputeStatus.NONE:
            raise DisputeAlreadyExistsError(str(transaction_id), tx.dispute_status)

        old_status = tx.dispute_status
        tx.dispute_status = validate_transition(DisputeStateMachine, old_status, "open_dispute")
        dispute = Dispute(
            transaction_id=tx.id,
            opened_by=actor_id,
            reason=reason,
            evidence=evidence,
            status=DisputeStatus.OPEN.value,
            opened_at=utcnow(),
        )
        await self._dispute_repo.save(tx, dispute)

        try:
            dispute.arbitration_ref = await self._arbitration.submit_case(
                dispute_id=str(dispute.id),
                transaction_id=str(tx.id),
                opened_by=actor_id,
                reason=reason,
                evidence=evidence,
            )
        except Exception as exc:
            logger.error(
                "dispute.arbitration_submit_failed",
                transaction_id=str(tx.id),
                error=str(exc),
            )
            raise ArbitrationUnavailableError(
                f"Could not submit the dispute for arbitration: {exc}"
            ) from exc
        await self._dispute_repo.save(dispute)

        await self._record(
            AggregateType.DISPUTE,
            dispute.id,
            EventType.DISPUTE_OPENED,
            old_status,
            tx.dispute_status,
            actor_id,
            metadata={
                "transaction_id": str(tx.id),
                "reason": reason,
                "escrow_status": tx.escrow_status,
                "arbitration_ref": dispute.arbitration_ref,
            },
        )
        counterparty = tx.to_user if actor_id == tx.from_user else tx.from_user
        await self._notify(
            counterparty,
            "dispute.opened",
            {"transaction_id": str(tx.id), "dispute_id": str(dispute.id)},
        )

        logger.info(
            "dispute.opened",
            transaction_id=str(tx.id),
            dispute_id=str(dispute.id),
            opened_by=actor_id,
            funds_frozen=tx.escrow_status == EscrowStatus.HELD,
        )
        return dispute

    async def resolve(
        self,
        transaction_id: uuid.UUID,
        outcome: DisputeOutcome,
        note: str | None = None,
        actor: str = "ARBITRATION",
    ) -> Dispute:
        """Apply an arbitration verdict.

        Resolution and any resulting fund movement happen in the same
        database transaction; if the refund's gateway call fails, nothing
        is committed and the dispute stays open.
        """
        outcome = DisputeOutcome(outcome)
        tx = await self._get_transaction_or_raise(transaction_id)
        dispute = await self._dispute_repo.get_by_transaction(tx.id)
        if dispute is None:
            raise InvalidStateTransitionError(
                tx.dispute_status, "resolve_dispute", entity="dispute"
            )

        old_status = tx.dispute_status
        new_status = validate_transition(DisputeStateMachine, old_status, "resolve_dispute")
        now = utcnow()
        tx.dispute_status = new_status
        dispute.status = new_status
        dispute.outcome = outcome.value
        dispute.resolution_note = note
        dispute.resolved_at = now
        await self._dispute_repo.save(tx, dispute)

        event_type = (
            EventType.DISPUTE_RESOLVED_ADOPTER
            if outcome == DisputeOutcome.FAVOR_ADOPTER
            else EventType.DISPUTE_RESOLVED_OWNER
        )
        await self._record(
            AggregateType.DISPUTE,
            dispute.id,
            event_type,
            old_status,
            new_status,
            actor,
            metadata={"transaction_id": str(tx.id), "outcome": outcome.value, "note": note},
        )

        if tx.escrow_status == EscrowStatus.HELD:
            if outcome == DisputeOutcome.FAVOR_ADOPTER:
                await self._escrow.refund(
                    tx.id,
                    reason="dispute_resolved_for_adopter",
                    actor=actor,
                    by_arbitration=True,
                )
            else:
                await self._escrow.release_by_arbitration(tx.id, actor=actor)
        else:
            logger.info(
                "dispute.resolved_without_fund_movement",
                transaction_id=str(tx.id),
                escrow_status=tx.escrow_status,
            )

        for user_id in (tx.from_user, tx.to_user):
            await self._notify(
                user_id,
                "dispute.resolved",
                {"transaction_id": str(tx.id), "outcome": outcome.value},
            )

        logger.info(
            "dispute.resolved",
            transaction_id=str(tx.id),
            dispute_id=str(dispute.id),
            outcome=outcome.value,
        )
        return dispute

    async def get_dispute(self, transaction_id: uuid.UUID, actor_id: str) -> Dispute:
        tx = await self._get_transaction_or_raise(transaction_id)
        if actor_id not in (tx.from_user, tx.to_user):
            raise NotPartyError(str(transaction_id), actor_id)
        dispute = await self._dispute_repo.get_by_transaction(tx.id)
        if dispute is None:
            raise DisputeNotFoundError(str(transaction_id))
        return dispute
