"""Outbox dispatcher: delivers side effects recorded by committed transactions.

Each pending message is handled in its own session:

    load -> [route by topic] -> release funds | send notification -> mark

Delivery is at-least-once. ``EscrowService.release`` is idempotent, so a
release request delivered twice pays out once. A release refused because the
transfer is blocked or no longer valid (dispute opened in the meantime,
funds refunded) is marked ``skipped``: the dispute resolution or refund has
taken over. Any other error leaves the message pending for the next cycle
until ``outbox_max_attempts`` is reached, then marks it ``failed``.

Usage:
    from rehoming_escrow.orchestration.dispatcher import dispatch_outbox

    report = await dispatch_outbox(session_factory, gateway, notifier)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, TypedDict

from rehoming_escrow.config import Settings, get_settings
from rehoming_escrow.domain.enums import OutboxStatus, OutboxTopic
from rehoming_escrow.domain.exceptions import (
    BlockedError,
    InvalidStateTransitionError,
    NotFoundError,
)
from rehoming_escrow.infrastructure.database.repositories import OutboxRepository
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.services.escrow_service import EscrowService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from rehoming_escrow.domain.ports import Notifier, PaymentGateway
    from rehoming_escrow.infrastructure.database.orm_models import OutboxMessage

logger = get_logger(__name__)

_SKIP_ERRORS = (BlockedError, InvalidStateTransitionError, NotFoundError)


class DispatchReport(TypedDict):
    """Counts of what one dispatch pass did with each pending message."""

    processed: int
    skipped: int
    retrying: int
    failed: int


async def dispatch_outbox(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway,
    notifier: Notifier,
    settings: Settings | None = None,
    limit: int | None = None,
) -> DispatchReport:
    """Deliver up to ``limit`` pending outbox messages, oldest first.

    Messages queued while the pass runs (the notifications a release writes)
    are picked up by the same pass. Each message is attempted at most once
    per pass, so a message left pending for retry waits for the next one.
    """
    settings = settings or get_settings()
    budget = limit or settings.outbox_batch_size
    report: DispatchReport = {"processed": 0, "skipped": 0, "retrying": 0, "failed": 0}
    attempted: set[uuid.UUID] = set()

    while len(attempted) < budget:
        async with session_factory() as session:
            message_ids = await OutboxRepository(session).get_pending_ids(
                budget - len(attempted), exclude=attempted
            )
        if not message_ids:
            break
        for message_id in message_ids:
            attempted.add(message_id)
            outcome = await _dispatch_one(session_factory, message_id, gateway, notifier, settings)
            if outcome is not None:
                report[outcome] += 1

    if attempted:
        logger.info("outbox.dispatched", **report)
    return report


async def _dispatch_one(
    session_factory: async_sessionmaker[AsyncSession],
    message_id: uuid.UUID,
    gateway: PaymentGateway,
    notifier: Notifier,
    settings: Settings,
) -> str | None:
    async with session_factory() as session:
        repo = OutboxRepository(session)
        message = await repo.get_by_id(message_id)
        if message is None or message.status != OutboxStatus.PENDING:
            return None
        topic = message.topic

        try:
            await _deliver(session, message, gateway, notifier, settings)
            await repo.mark(message, OutboxStatus.PROCESSED)
            await session.commit()
            return "processed"
        except _SKIP_ERRORS as exc:
            await session.rollback()
            logger.info(
                "outbox.message_skipped",
                message_id=str(message_id),
                topic=topic,
                reason=getattr(exc, "code", type(exc).__name__),
            )
            return await _settle_failure(session, message_id, str(exc), True, settings)
        except Exception as exc:
            await session.rollback()
            logger.exception("outbox.delivery_failed", message_id=str(message_id))
            return await _settle_failure(session, message_id, str(exc), False, settings)


async def _deliver(
    session: AsyncSession,
    message: OutboxMessage,
    gateway: PaymentGateway,
    notifier: Notifier,
    settings: Settings,
) -> None:
    payload = message.payload or {}
    if message.topic == OutboxTopic.RELEASE_REQUESTED:
        escrow = EscrowService(session, gateway, settings)
        await escrow.release(uuid.UUID(payload["transaction_id"]), actor="OUTBOX")
    elif message.topic == OutboxTopic.NOTIFICATION:
        await notifier.send(payload["user_id"], payload["event"], payload.get("data", {}))
    else:
        raise ValueError(f"Unknown outbox topic: {message.topic}")


async def _settle_failure(
    session: AsyncSession,
    message_id: uuid.UUID,
    error: str,
    skip: bool,
    settings: Settings,
) -> str | None:
    """Record the outcome of an undeliverable message after the rollback."""
    repo = OutboxRepository(session)
    message = await repo.get_by_id(message_id)
    if message is None or message.status != OutboxStatus.PENDING:
        return None

    message.attempts += 1
    if skip:
        outcome, status = "skipped", OutboxStatus.SKIPPED
    elif message.attempts >= settings.outbox_max_attempts:
        outcome, status = "failed", OutboxStatus.FAILED
        logger.error(
            "outbox.message_failed",
            message_id=str(message_id),
            topic=message.topic,
            attempts=message.attempts,
        )
    else:
        outcome, status = "retrying", OutboxStatus.PENDING
    await repo.mark(message, status, error=error)
    await session.commit()
    return outcome
