"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Every flush goes through ``_Repository._flush`` so that a lost optimistic
version check (StaleDataError) or a partial-unique-index violation
(IntegrityError) surfaces as a domain ConcurrentUpdateError.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from rehoming_escrow.domain.enums import (
    ACTIVE_REQUEST_STATUSES,
    NON_TERMINAL_REQUEST_STATUSES,
    OutboxStatus,
    TransactionStatus,
)
from rehoming_escrow.domain.exceptions import ConcurrentUpdateError
from rehoming_escrow.infrastructure.database.orm_models import (
    AdoptionRequest,
    Dispute,
    OutboxMessage,
    RehomingEvent,
    RehomingPet,
    RehomingTransaction,
    TransferConfirmation,
)
from rehoming_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Collection, Iterable
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from rehoming_escrow.domain.enums import (
        AdoptionRequestStatus,
        AdoptionType,
        AggregateType,
        EventType,
        OutboxTopic,
        Species,
    )

logger = get_logger(__name__)


class _Repository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except StaleDataError as err:
            logger.warning("database.stale_version", error=str(err))
            raise ConcurrentUpdateError() from err
        except IntegrityError as err:
            logger.warning("database.integrity_conflict", error=str(err.orig))
            raise ConcurrentUpdateError(
                "A conflicting record was written concurrently; reload and retry"
            ) from err

    async def save(self, *rows: object) -> None:
        """Add rows (new or modified) and flush them with version checks."""
        self._session.add_all(rows)
        await self._flush()

    async def claim(self, *rows: object) -> None:
        """Flush a version bump on rows even when nothing else about them changed.

        A writer that loaded any of these rows before the claim fails its
        version check on flush.
        """
        for row in rows:
            flag_modified(row, "updated_at")
        await self.save(*rows)


class PetRepository(_Repository):
    """Data access for pet listings."""

    async def get_by_id(self, pet_id: uuid.UUID) -> RehomingPet | None:
        """Fetch a listing by its UUID (removed listings included)."""
        result = await self._session.execute(select(RehomingPet).where(RehomingPet.id == pet_id))
        return result.scalar_one_or_none()

    async def search_available(
        self,
        *,
        species: Species | None = None,
        adoption_type: AdoptionType | None = None,
        min_age: int | None = None,
        max_age: int | None = None,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[RehomingPet], int]:
        """Return one page of available listings and the total match count."""
        conditions = [
            RehomingPet.is_adopted.is_(False),
            RehomingPet.is_removed.is_(False),
            RehomingPet.active_request_id.is_(None),
        ]
        if species is not None:
            conditions.append(RehomingPet.species == species.value)
        if adoption_type is not None:
            conditions.append(RehomingPet.adoption_type == adoption_type.value)
        if min_age is not None:
            conditions.append(RehomingPet.age >= min_age)
        if max_age is not None:
            conditions.append(RehomingPet.age <= max_age)
        if min_price is not None:
            conditions.append(RehomingPet.price >= min_price)
        if max_price is not None:
            conditions.append(RehomingPet.price <= max_price)
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(RehomingPet.name).like(pattern),
                    func.lower(RehomingPet.breed).like(pattern),
                    func.lower(RehomingPet.description).like(pattern),
                )
            )

        total = await self._session.scalar(
            select(func.count()).select_from(RehomingPet).where(*conditions)
        )
        result = await self._session.execute(
            select(RehomingPet)
            .where(*conditions)
            .order_by(RehomingPet.created_at.desc(), RehomingPet.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def get_by_owner(self, owner_id: str) -> list[RehomingPet]:
        """Fetch an owner's listings (removed ones excluded), newest first."""
        result = await self._session.execute(
            select(RehomingPet)
            .where(RehomingPet.owner_id == owner_id, RehomingPet.is_removed.is_(False))
            .order_by(RehomingPet.created_at.desc())
        )
        return list(result.scalars().all())


class AdoptionRequestRepository(_Repository):
    """Data access for adoption requests."""

    async def get_by_id(self, request_id: uuid.UUID) -> AdoptionRequest | None:
        result = await self._session.execute(
            select(AdoptionRequest).where(AdoptionRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def get_by_pet(self, pet_id: uuid.UUID) -> list[AdoptionRequest]:
        """Fetch all requests for a pet, oldest first."""
        result = await self._session.execute(
            select(AdoptionRequest)
            .where(AdoptionRequest.pet_id == pet_id)
            .order_by(AdoptionRequest.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_by_adopter(self, adopter_id: str) -> list[AdoptionRequest]:
        result = await self._session.execute(
            select(AdoptionRequest)
            .where(AdoptionRequest.adopter_id == adopter_id)
            .order_by(AdoptionRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_owner(self, owner_id: str) -> list[AdoptionRequest]:
        """Fetch requests received on any of the owner's listings."""
        result = await self._session.execute(
            select(AdoptionRequest)
            .join(RehomingPet, RehomingPet.id == AdoptionRequest.pet_id)
            .where(RehomingPet.owner_id == owner_id)
            .order_by(AdoptionRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_open_for_adopter(
        self, pet_id: uuid.UUID, adopter_id: str
    ) -> AdoptionRequest | None:
        result = await self._session.execute(
            select(AdoptionRequest).where(
                AdoptionRequest.pet_id == pet_id,
                AdoptionRequest.adopter_id == adopter_id,
                AdoptionRequest.status.in_([s.value for s in NON_TERMINAL_REQUEST_STATUSES]),
            )
        )
        return result.scalars().first()

    async def find_active_for_pet(self, pet_id: uuid.UUID) -> AdoptionRequest | None:
        result = await self._session.execute(
            select(AdoptionRequest).where(
                AdoptionRequest.pet_id == pet_id,
                AdoptionRequest.status.in_([s.value for s in ACTIVE_REQUEST_STATUSES]),
            )
        )
        return result.scalars().first()

    async def count_non_terminal_for_pet(self, pet_id: uuid.UUID) -> int:
        total = await self._session.scalar(
            select(func.count())
            .select_from(AdoptionRequest)
            .where(
                AdoptionRequest.pet_id == pet_id,
                AdoptionRequest.status.in_([s.value for s in NON_TERMINAL_REQUEST_STATUSES]),
            )
        )
        return int(total or 0)

    async def get_stale(
        self, status: AdoptionRequestStatus, changed_before: datetime
    ) -> list[AdoptionRequest]:
        """Fetch requests that have sat in ``status`` since before the cutoff."""
        result = await self._session.execute(
            select(AdoptionRequest)
            .where(
                AdoptionRequest.status == status.value,
                AdoptionRequest.status_changed_at < changed_before,
            )
            .order_by(AdoptionRequest.status_changed_at.asc())
        )
        return list(result.scalars().all())


class TransactionRepository(_Repository):
    """Data access for escrow transactions."""

    async def get_by_id(self, transaction_id: uuid.UUID) -> RehomingTransaction | None:
        result = await self._session.execute(
            select(RehomingTransaction).where(RehomingTransaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_by_request(self, request_id: uuid.UUID) -> list[RehomingTransaction]:
        """Fetch every payment attempt for a request, newest first."""
        result = await self._session.execute(
            select(RehomingTransaction)
            .where(RehomingTransaction.adoption_request_id == request_id)
            .order_by(RehomingTransaction.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_party(self, user_id: str) -> list[RehomingTransaction]:
        result = await self._session.execute(
            select(RehomingTransaction)
            .where(
                or_(
                    RehomingTransaction.from_user == user_id,
                    RehomingTransaction.to_user == user_id,
                )
            )
            .order_by(RehomingTransaction.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_held_since_before(self, held_before: datetime) -> list[RehomingTransaction]:
        result = await self._session.execute(
            select(RehomingTransaction)
            .where(
                RehomingTransaction.status == TransactionStatus.HELD.value,
                RehomingTransaction.held_at < held_before,
            )
            .order_by(RehomingTransaction.held_at.asc())
        )
        return list(result.scalars().all())


class ConfirmationRepository(_Repository):
    """Data access for transfer confirmations."""

    async def get_by_request(self, request_id: uuid.UUID) -> TransferConfirmation | None:
        result = await self._session.execute(
            select(TransferConfirmation).where(
                TransferConfirmation.adoption_request_id == request_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> TransferConfirmation | None:
        result = await self._session.execute(
            select(TransferConfirmation).where(
                TransferConfirmation.transaction_id == transaction_id
            )
        )
        return result.scalar_one_or_none()

    async def get_pending_for_user(self, user_id: str) -> list[TransferConfirmation]:
        """Confirmations on live handovers where this user has not confirmed yet."""
        result = await self._session.execute(
            select(TransferConfirmation)
            .join(AdoptionRequest, AdoptionRequest.id == TransferConfirmation.adoption_request_id)
            .where(
                AdoptionRequest.status.in_([s.value for s in ACTIVE_REQUEST_STATUSES]),
                or_(
                    (TransferConfirmation.owner_id == user_id)
                    & TransferConfirmation.owner_confirmed.is_(False),
                    (TransferConfirmation.adopter_id == user_id)
                    & TransferConfirmation.adopter_confirmed.is_(False),
                ),
            )
            .order_by(TransferConfirmation.created_at.asc())
        )
        return list(result.scalars().all())


class DisputeRepository(_Repository):
    """Data access for disputes."""

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(
            select(Dispute).where(Dispute.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()


class EventRepository(_Repository):
    """Data access for the append-only audit event log."""

    async def record(
        self,
        aggregate_type: AggregateType,
        aggregate_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None,
        new_status: str | None,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> RehomingEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = RehomingEvent(
            aggregate_type=aggregate_type.value,
            aggregate_id=aggregate_id,
            event_type=event_type.value,
            old_status=str(old_status) if old_status is not None else None,
            new_status=str(new_status) if new_status is not None else None,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._flush()
        return evt

    async def get_by_aggregates(self, aggregate_ids: Iterable[uuid.UUID]) -> list[RehomingEvent]:
        """Fetch all events for the given aggregates in chronological order."""
        result = await self._session.execute(
            select(RehomingEvent)
            .where(RehomingEvent.aggregate_id.in_(list(aggregate_ids)))
            .order_by(RehomingEvent.created_at.asc())
        )
        return list(result.scalars().all())


class OutboxRepository(_Repository):
    """Data access for the transactional outbox."""

    async def enqueue(
        self,
        topic: OutboxTopic,
        aggregate_id: uuid.UUID | str,
        payload: dict,
    ) -> OutboxMessage:
        """Write a message in the caller's transaction; it is visible only after commit."""
        message = OutboxMessage(
            topic=topic.value,
            aggregate_id=str(aggregate_id),
            payload=payload,
            status=OutboxStatus.PENDING.value,
        )
        self._session.add(message)
        await self._flush()
        return message

    async def get_by_id(self, message_id: uuid.UUID) -> OutboxMessage | None:
        result = await self._session.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        return result.scalar_one_or_none()

    async def get_pending_ids(
        self, limit: int, exclude: Collection[uuid.UUID] = ()
    ) -> list[uuid.UUID]:
        query = select(OutboxMessage.id).where(OutboxMessage.status == OutboxStatus.PENDING.value)
        if exclude:
            query = query.where(OutboxMessage.id.not_in(list(exclude)))
        result = await self._session.execute(
            query.order_by(OutboxMessage.created_at.asc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get_by_aggregate(
        self, aggregate_id: uuid.UUID | str, topic: OutboxTopic | None = None
    ) -> list[OutboxMessage]:
        query = select(OutboxMessage).where(OutboxMessage.aggregate_id == str(aggregate_id))
        if topic is not None:
            query = query.where(OutboxMessage.topic == topic.value)
        result = await self._session.execute(query.order_by(OutboxMessage.created_at.asc()))
        return list(result.scalars().all())

    async def mark(
        self,
        message: OutboxMessage,
        status: OutboxStatus,
        error: str | None = None,
    ) -> OutboxMessage:
        message.status = status.value
        message.last_error = error
        if status in (OutboxStatus.PROCESSED, OutboxStatus.SKIPPED):
            message.processed_at = datetime.now(UTC)
        await self._flush()
        return message
