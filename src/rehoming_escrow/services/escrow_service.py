"""Escrow Transaction Engine: the only code that moves money.

This is the application layer that coordinates between:
    - Domain state machines (request, transaction, escrow guards)
    - The PaymentGateway collaborator (authorize / capture / refund)
    - Repositories (data access, optimistic version checks)
    - Event log (audit trail) and outbox (notifications)

Money rules:
    - Local state is written only after the gateway call it depends on has
      succeeded. Before calling the gateway the service flushes a version
      bump on the row it is about to change ("claims" it), so a concurrent
      caller that loaded the same version fails with ConcurrentUpdateError
      before it ever reaches the gateway.
    - release and refund are the two terminal moves out of escrow HELD;
      the versioned transaction row guarantees exactly one of them wins.
    - release is idempotent: calling it on a released transaction is a no-op,
      which lets the outbox dispatcher deliver release requests at-least-once.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, NoReturn

from rehoming_escrow.config import Settings, get_settings
from rehoming_escrow.domain.enums import (
    AdoptionRequestStatus,
    AggregateType,
    DisputeStatus,
    EscrowStatus,
    EventType,
    TransactionStatus,
)
from rehoming_escrow.domain.exceptions import (
    DisputeOpenError,
    DuplicateOperationError,
    NotPartyError,
    PaymentAmountMismatchError,
    PaymentGatewayError,
    TransferAlreadyConfirmedError,
    TransferNotConfirmedError,
)
from rehoming_escrow.domain.money import split_fee, to_money
from rehoming_escrow.domain.ports import GatewayResult, GatewayUnavailableError
from rehoming_escrow.domain.state_machine import (
    AdoptionRequestStateMachine,
    EscrowStateMachine,
    TransactionStateMachine,
    validate_transition,
)
from rehoming_escrow.infrastructure.database.orm_models import (
    RehomingTransaction,
    TransferConfirmation,
)
from rehoming_escrow.infrastructure.redis_client import claim_idempotency, release_idempotency
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.services.base import BaseService, utcnow

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from decimal import Decimal

    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession

    from rehoming_escrow.domain.ports import PaymentGateway
    from rehoming_escrow.infrastructure.database.orm_models import (
        AdoptionRequest,
        RehomingEvent,
    )

logger = get_logger(__name__)

TRANSFER_TIMEOUT_REASON = "transfer_confirmation_timeout"


class EscrowService(BaseService):
    """Payment capture into escrow, release to the owner, refund to the adopter."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        settings: Settings | None = None,
        redis: aioredis.Redis | None = None,
    ) -> None:
        super().__init__(session)
        self._gateway = gateway
        self._settings = settings or get_settings()
        self._redis = redis

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def initiate_payment(
        self,
        request_id: uuid.UUID,
        adopter_id: str,
        amount: Decimal,
        idempotency_key: str | None = None,
    ) -> RehomingTransaction:
        """Authorize and capture the adopter's payment into escrow.

        On success the transaction is HELD, the request is
        pet_transfer_pending and the handover confirmation is open.

        On a decline or gateway outage the attempt is committed as a FAILED
        transaction, the request is (back in) payment_pending, and
        PaymentGatewayError is raised so the adopter can retry.

        Raises:
            DuplicateOperationError: The idempotency key was already used.
        """
        if idempotency_key is None or self._redis is None:
            return await self._initiate_payment(request_id, adopter_id, amount)

        redis_key = f"payment:{request_id}:{idempotency_key}"
        if not await claim_idempotency(self._redis, redis_key):
            logger.warning(
                "idempotency.duplicate", request_id=str(request_id), key=idempotency_key
            )
            raise DuplicateOperationError(idempotency_key)
        try:
            return await self._initiate_payment(request_id, adopter_id, amount)
        except Exception:
            await release_idempotency(self._redis, redis_key)
            raise

    async def _initiate_payment(
        self,
        request_id: uuid.UUID,
        adopter_id: str,
        amount: Decimal,
    ) -> RehomingTransaction:
        request = await self._get_request_or_raise(request_id)
        if request.adopter_id != adopter_id:
            raise NotPartyError(str(request_id), adopter_id, role="adopter")
        validate_transition(AdoptionRequestStateMachine, request.status, "payment_authorized")

        pet = await self._get_pet_or_raise(request.pet_id, include_removed=True)
        expected = to_money(pet.price) if pet.price is not None else None
        if expected is None or to_money(amount) != expected:
            raise PaymentAmountMismatchError(str(expected), str(to_money(amount)))

        split = split_fee(amount, self._settings.platform_fee_rate)

        # Claim the request and open the pending transaction in one flush.
        request.payment_attempts += 1
        tx = RehomingTransaction(
            adoption_request_id=request.id,
            pet_id=pet.id,
            from_user=request.adopter_id,
            to_user=pet.owner_id,
            amount=split.amount,
            fee_rate=split.fee_rate,
            platform_fee=split.platform_fee,
            net_amount=split.net_amount,
            status=TransactionStatus.PENDING.value,
            escrow_status=None,
            dispute_status=DisputeStatus.NONE.value,
        )
        await self._tx_repo.save(request, tx)
        await self._record(
            AggregateType.TRANSACTION,
            tx.id,
            EventType.PAYMENT_INITIATED,
            None,
            TransactionStatus.PENDING,
            adopter_id,
            metadata={
                "amount": str(split.amount),
                "platform_fee": str(split.platform_fee),
                "net_amount": str(split.net_amount),
                "attempt": request.payment_attempts,
            },
        )

        # 1. Authorize
        auth = await self._call_gateway(
            "authorize", tx, self._gateway.authorize, split.amount, adopter_id
        )
        if not auth.success:
            await self._fail_payment(tx, request, auth.error or "authorization_failed")
        tx.gateway_ref = auth.gateway_ref
        statuses = self._move_request(request, "payment_authorized")
        await self._tx_repo.save(tx, request)
        await self._record_request(
            request,
            EventType.PAYMENT_AUTHORIZED,
            statuses,
            "SYSTEM",
            metadata={"transaction_id": str(tx.id), "gateway_ref": auth.gateway_ref},
        )

        # 2. Capture (void the authorization if it does not go through)
        capture = await self._call_gateway("capture", tx, self._gateway.capture, auth.gateway_ref)
        if not capture.success:
            await self._void_authorization(auth.gateway_ref, tx)
            await self._fail_payment(tx, request, capture.error or "capture_failed")

        # 3. Funds are held
        now = utcnow()
        old_tx_status = tx.status
        tx.status = validate_transition(TransactionStateMachine, tx.status, "capture_succeeded")
        tx.escrow_status = EscrowStatus.HELD.value
        tx.held_at = now
        statuses = self._move_request(request, "payment_captured", now=now)
        confirmation = await self._confirmation_repo.get_by_request(request.id)
        if confirmation is None:
            confirmation = TransferConfirmation(
                adoption_request_id=request.id,
                owner_id=pet.owner_id,
                adopter_id=request.adopter_id,
                owner_confirmed=False,
                adopter_confirmed=False,
            )
        confirmation.transaction_id = tx.id
        await self._tx_repo.save(tx, request, confirmation)

        await self._record(
            AggregateType.TRANSACTION,
            tx.id,
            EventType.PAYMENT_HELD,
            old_tx_status,
            tx.status,
            "SYSTEM",
            metadata={"gateway_ref": tx.gateway_ref, "escrow_status": tx.escrow_status},
        )
        await self._record_request(
            request, EventType.PAYMENT_HELD, statuses, "SYSTEM", {"transaction_id": str(tx.id)}
        )
        notice = {"transaction_id": str(tx.id), "request_id": str(request.id)}
        await self._notify(
            tx.to_user, "escrow.funds_held", {**notice, "net_amount": str(tx.net_amount)}
        )
        await self._notify(tx.from_user, "escrow.funds_held", {**notice, "amount": str(tx.amount)})

        logger.info(
            "escrow.held",
            transaction_id=str(tx.id),
            request_id=str(request.id),
            amount=str(tx.amount),
            platform_fee=str(tx.platform_fee),
        )
        return tx

    async def _call_gateway(
        self,
        operation: str,
        tx: RehomingTransaction,
        call,  # noqa: ANN001
        *args: object,
    ) -> GatewayResult:
        """Invoke a gateway operation during payment, turning outages into declines."""
        try:
            return await call(*args)
        except GatewayUnavailableError as exc:
            logger.warning(
                "escrow.gateway_unavailable",
                operation=operation,
                transaction_id=str(tx.id),
                error=str(exc),
            )
            return GatewayResult(success=False, error=f"gateway_unavailable: {exc}")

    async def _void_authorization(self, gateway_ref: str | None, tx: RehomingTransaction) -> None:
        if gateway_ref is None:
            return
        try:
            result = await self._gateway.refund(gateway_ref)
        except GatewayUnavailableError as exc:
            result = GatewayResult(success=False, gateway_ref=gateway_ref, error=str(exc))
        if not result.success:
            # The authorization lapses on the gateway side; flag it for reconciliation.
            logger.error(
                "escrow.void_failed",
                transaction_id=str(tx.id),
                gateway_ref=gateway_ref,
                error=result.error,
            )

    async def _fail_payment(
        self,
        tx: RehomingTransaction,
        request: AdoptionRequest,
        reason: str,
    ) -> NoReturn:
        """Commit the failed attempt for the audit trail, then raise."""
        old_tx_status = tx.status
        tx.status = validate_transition(TransactionStateMachine, tx.status, "payment_failed")
        tx.failure_reason = reason
        rows: list[object] = [tx]
        request_statuses = None
        if request.status != AdoptionRequestStatus.PAYMENT_PENDING:
            request_statuses = self._move_request(request, "payment_declined")
            rows.append(request)
        await self._tx_repo.save(*rows)

        await self._record(
            AggregateType.TRANSACTION,
            tx.id,
            EventType.PAYMENT_FAILED,
            old_tx_status,
            tx.status,
            "SYSTEM",
            metadata={"reason": reason},
        )
        if request_statuses is not None:
            await self._record_request(
                request,
                EventType.PAYMENT_FAILED,
                request_statuses,
                "SYSTEM",
                metadata={"transaction_id": str(tx.id), "reason": reason},
            )
        await self._notify(
            tx.from_user,
            "escrow.payment_failed",
            {"transaction_id": str(tx.id), "request_id": str(request.id), "reason": reason},
        )
        await self._session.commit()

        logger.warning(
            "escrow.payment_failed",
            transaction_id=str(tx.id),
            request_id=str(request.id),
            reason=reason,
        )
        raise PaymentGatewayError(
            f"Payment could not be completed: {reason}",
            operation="payment",
            transaction_id=str(tx.id),
        )

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(
        self, transaction_id: uuid.UUID, actor: str = "SYSTEM"
    ) -> RehomingTransaction:
        """Pay the held funds out to the owner once both parties confirmed.

        Calling this on an already-released transaction is a no-op.

        Raises:
            InvalidStateTransitionError: The transaction is not holding funds.
            DisputeOpenError: A dispute is open (Blocked).
            TransferNotConfirmedError: Either confirmation is missing (Blocked).
        """
        return await self._release(transaction_id, actor, require_confirmations=True)

    async def release_by_arbitration(
        self, transaction_id: uuid.UUID, actor: str = "ARBITRATION"
    ) -> RehomingTransaction:
        """Release after an arbitration verdict for the owner; confirmations are not required."""
        return await self._release(transaction_id, actor, require_confirmations=False)

    async def _release(
        self,
        transaction_id: uuid.UUID,
        actor: str,
        require_confirmations: bool,
    ) -> RehomingTransaction:
        tx = await self._get_transaction_or_raise(transaction_id)
        if tx.escrow_status == EscrowStatus.RELEASED:
            logger.info("escrow.release_noop", transaction_id=str(tx.id))
            return tx

        new_status = validate_transition(TransactionStateMachine, tx.status, "settle_release")
        if tx.dispute_status == DisputeStatus.OPEN:
            raise DisputeOpenError(str(tx.id))
        if require_confirmations:
            confirmation = await self._confirmation_repo.get_by_transaction(tx.id)
            if confirmation is None or not confirmation.both_confirmed:
                raise TransferNotConfirmedError(
                    str(tx.id),
                    owner_confirmed=bool(confirmation and confirmation.owner_confirmed),
                    adopter_confirmed=bool(confirmation and confirmation.adopter_confirmed),
                )
        new_escrow = validate_transition(EscrowStateMachine, tx.escrow_status, "release_funds")

        request = await self._get_request_or_raise(tx.adoption_request_id)
        pet = await self._get_pet_or_raise(tx.pet_id, include_removed=True)

        now = utcnow()
        old_tx_status = tx.status
        tx.status = new_status
        tx.escrow_status = new_escrow
        tx.released_at = now
        request_statuses = self._move_request(request, "handover_completed", now=now)
        pet.is_adopted = True
        await self._tx_repo.save(tx, request, pet)

        await self._record(
            AggregateType.TRANSACTION,
            tx.id,
            EventType.FUNDS_RELEASED,
            old_tx_status,
            tx.status,
            actor,
            metadata={
                "net_amount": str(tx.net_amount),
                "platform_fee": str(tx.platform_fee),
                "by_arbitration": not require_confirmations,
            },
        )
        await self._record_request(request, EventType.REQUEST_COMPLETED, request_statuses, actor)
        await self._record(
            AggregateType.PET,
            pet.id,
            EventType.PET_ADOPTED,
            None,
            None,
            actor,
            metadata={"request_id": str(request.id), "adopter_id": request.adopter_id},
        )
        await self._notify(
            tx.to_user,
            "escrow.funds_released",
            {"transaction_id": str(tx.id), "net_amount": str(tx.net_amount)},
        )
        await self._notify(
            tx.from_user,
            "adoption.completed",
            {"transaction_id": str(tx.id), "pet_id": str(pet.id)},
        )

        logger.info(
            "escrow.released",
            transaction_id=str(tx.id),
            net_amount=str(tx.net_amount),
            by_arbitration=not require_confirmations,
        )
        return tx

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    async def refund(
        self,
        transaction_id: uuid.UUID,
        reason: str,
        actor: str = "SYSTEM",
        by_arbitration: bool = False,
    ) -> RehomingTransaction:
        """Return held funds to the adopter and put the pet back on offer.

        The row is claimed (version bump) before the gateway is called, so a
        concurrent release or refund on the same transaction loses with
        ConcurrentUpdateError and never reaches the gateway. If the gateway
        call fails, PaymentGatewayError is raised and the caller's rollback
        leaves the transaction HELD.

        Outside arbitration a refund is only possible while the handover is
        unconfirmed. The confirmation row is claimed together with the
        transaction, so a confirmation committed after it was read makes the
        refund lose with ConcurrentUpdateError.

        Raises:
            DisputeOpenError: A dispute is open and this is not its verdict.
            TransferAlreadyConfirmedError: Both parties confirmed the handover.
        """
        tx = await self._get_transaction_or_raise(transaction_id)
        new_status = validate_transition(TransactionStateMachine, tx.status, "settle_refund")
        if tx.dispute_status == DisputeStatus.OPEN and not by_arbitration:
            raise DisputeOpenError(str(tx.id))
        new_escrow = validate_transition(EscrowStateMachine, tx.escrow_status, "refund_funds")

        claimed: list[object] = [tx]
        if not by_arbitration:
            confirmation = await self._confirmation_repo.get_by_transaction(tx.id)
            if confirmation is not None:
                if confirmation.both_confirmed:
                    raise TransferAlreadyConfirmedError(str(tx.id))
                claimed.append(confirmation)

        tx.refund_reason = reason
        await self._tx_repo.claim(*claimed)

        try:
            result = await self._gateway.refund(tx.gateway_ref)
        except GatewayUnavailableError as exc:
            logger.warning("escrow.refund_unavailable", transaction_id=str(tx.id), error=str(exc))
            raise PaymentGatewayError(
                f"Refund could not reach the payment gateway: {exc}",
                operation="refund",
                transaction_id=str(tx.id),
            ) from exc
        if not result.success:
            logger.warning("escrow.refund_declined", transaction_id=str(tx.id), error=result.error)
            raise PaymentGatewayError(
                f"Refund was declined: {result.error}",
                operation="refund",
                transaction_id=str(tx.id),
            )

        request = await self._get_request_or_raise(tx.adoption_request_id)
        pet = await self._get_pet_or_raise(tx.pet_id, include_removed=True)

        now = utcnow()
        old_tx_status = tx.status
        tx.status = new_status
        tx.escrow_status = new_escrow
        tx.refunded_at = now
        rows: list[object] = [tx, request]
        request_statuses = self._move_request(request, "cancel_request", now=now)
        if pet.active_request_id == request.id:
            pet.active_request_id = None
            rows.append(pet)
        await self._tx_repo.save(*rows)

        await self._record(
            AggregateType.TRANSACTION,
            tx.id,
            EventType.FUNDS_REFUNDED,
            old_tx_status,
            tx.status,
            actor,
            metadata={
                "reason": reason,
                "amount": str(tx.amount),
                "by_arbitration": by_arbitration,
            },
        )
        await self._record_request(
            request, EventType.REQUEST_CANCELLED, request_statuses, actor, {"reason": reason}
        )
        for user_id in (tx.from_user, tx.to_user):
            await self._notify(
                user_id,
                "escrow.funds_refunded",
                {"transaction_id": str(tx.id), "amount": str(tx.amount), "reason": reason},
            )

        logger.info("escrow.refunded", transaction_id=str(tx.id), reason=reason)
        return tx

    async def find_stale_transfers(self, now: datetime | None = None) -> list[RehomingTransaction]:
        """Held transactions whose confirmation window lapsed without a dispute.

        Fully confirmed transactions are left alone: their release is already
        queued in the outbox.
        """
        now = now or utcnow()
        cutoff = now - timedelta(days=self._settings.transfer_timeout_days)
        stale = []
        for tx in await self._tx_repo.get_held_since_before(cutoff):
            if tx.dispute_status != DisputeStatus.NONE:
                continue
            confirmation = await self._confirmation_repo.get_by_transaction(tx.id)
            if confirmation is not None and confirmation.both_confirmed:
                continue
            stale.append(tx)
        return stale

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transaction(
        self, transaction_id: uuid.UUID, actor_id: str
    ) -> RehomingTransaction:
        """Fetch a transaction visible to its adopter or owner."""
        tx = await self._get_transaction_or_raise(transaction_id)
        if actor_id not in (tx.from_user, tx.to_user):
            raise NotPartyError(str(transaction_id), actor_id)
        return tx

    async def get_my_transactions(self, actor_id: str) -> list[RehomingTransaction]:
        return await self._tx_repo.get_by_party(actor_id)

    async def get_events(self, transaction_id: uuid.UUID, actor_id: str) -> list[RehomingEvent]:
        """Audit trail of the transaction, its request and any dispute."""
        tx = await self.get_transaction(transaction_id, actor_id)
        aggregate_ids = [tx.id, tx.adoption_request_id]
        dispute = await self._dispute_repo.get_by_transaction(tx.id)
        if dispute is not None:
            aggregate_ids.append(dispute.id)
        return await self._event_repo.get_by_aggregates(aggregate_ids)

