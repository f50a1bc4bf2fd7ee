"""Maintenance cycle: timeouts and outbox delivery.

One cycle runs four steps, each item in its own session so that one bad
record never blocks the rest:

    expire_stale_requests    -> payment_pending / accepted requests past their
                                window are cancelled and the pet is freed
    refund_stale_transfers   -> held funds past the confirmation window (no
                                dispute, not fully confirmed) go back to the adopter
    requeue_stalled_releases -> confirmed handovers whose release message failed
                                get a fresh release request
    dispatch_outbox          -> release requests and notifications are delivered

``maintenance_loop`` repeats the cycle every ``maintenance_interval_seconds``;
it is started as an asyncio task from the FastAPI lifespan.

Usage:
    from rehoming_escrow.orchestration.maintenance import run_maintenance_cycle

    report = await run_maintenance_cycle(session_factory, gateway, notifier)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypedDict

from rehoming_escrow.config import Settings, get_settings
from rehoming_escrow.domain.exceptions import RehomingError
from rehoming_escrow.logging_config import get_logger
from rehoming_escrow.orchestration.dispatcher import DispatchReport, dispatch_outbox
from rehoming_escrow.services.adoption_service import AdoptionService
from rehoming_escrow.services.base import utcnow
from rehoming_escrow.services.escrow_service import TRANSFER_TIMEOUT_REASON, EscrowService
from rehoming_escrow.services.transfer_service import TransferService

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from rehoming_escrow.domain.ports import Notifier, PaymentGateway

logger = get_logger(__name__)


class MaintenanceReport(TypedDict, total=False):
    """Summary of one maintenance cycle."""

    expired_requests: int
    refunded_transfers: int
    requeued_releases: int
    outbox: DispatchReport
    errors: list[str]


async def expire_stale_requests(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    now: datetime,
    errors: list[str] | None = None,
) -> int:
    """Cancel requests whose payment or handover window has lapsed."""
    async with session_factory() as session:
        stale = [
            (request.id, request.status)
            for request in await AdoptionService(session, settings).find_expired_requests(now)
        ]

    expired = 0
    for request_id, status in stale:
        async with session_factory() as session:
            try:
                result = await AdoptionService(session, settings).expire_request(
                    request_id, status, now=now
                )
                await session.commit()
            except RehomingError as exc:
                await session.rollback()
                logger.warning(
                    "maintenance.expire_failed", request_id=str(request_id), error=exc.message
                )
                if errors is not None:
                    errors.append(f"expire {request_id}: {exc.code}")
                continue
        if result is not None:
            expired += 1
    return expired


async def refund_stale_transfers(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway,
    settings: Settings,
    now: datetime,
    errors: list[str] | None = None,
) -> int:
    """Refund held payments whose handover was never confirmed."""
    async with session_factory() as session:
        escrow = EscrowService(session, gateway, settings)
        stale_ids = [tx.id for tx in await escrow.find_stale_transfers(now)]

    refunded = 0
    for transaction_id in stale_ids:
        async with session_factory() as session:
            try:
                await EscrowService(session, gateway, settings).refund(
                    transaction_id, reason=TRANSFER_TIMEOUT_REASON, actor="SYSTEM"
                )
                await session.commit()
            except RehomingError as exc:
                await session.rollback()
                logger.warning(
                    "maintenance.refund_failed",
                    transaction_id=str(transaction_id),
                    error=exc.message,
                )
                if errors is not None:
                    errors.append(f"refund {transaction_id}: {exc.code}")
                continue
        refunded += 1
    return refunded


async def requeue_stalled_releases(
    session_factory: async_sessionmaker[AsyncSession],
    errors: list[str] | None = None,
) -> int:
    """Queue a new release request where the outbox gave up on the last one."""
    async with session_factory() as session:
        stalled_ids = [tx.id for tx in await TransferService(session).find_stalled_releases()]

    requeued = 0
    for transaction_id in stalled_ids:
        async with session_factory() as session:
            try:
                queued = await TransferService(session).requeue_release(transaction_id)
                await session.commit()
            except RehomingError as exc:
                await session.rollback()
                logger.warning(
                    "maintenance.requeue_failed",
                    transaction_id=str(transaction_id),
                    error=exc.message,
                )
                if errors is not None:
                    errors.append(f"requeue {transaction_id}: {exc.code}")
                continue
        if queued:
            requeued += 1
    return requeued


async def run_maintenance_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway,
    notifier: Notifier,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> MaintenanceReport:
    """Run one full maintenance pass and return what it did."""
    settings = settings or get_settings()
    now = now or utcnow()
    errors: list[str] = []

    report: MaintenanceReport = {
        "expired_requests": await expire_stale_requests(session_factory, settings, now, errors),
        "refunded_transfers": await refund_stale_transfers(
            session_factory, gateway, settings, now, errors
        ),
        "requeued_releases": await requeue_stalled_releases(session_factory, errors),
    }
    report["outbox"] = await dispatch_outbox(session_factory, gateway, notifier, settings)
    report["errors"] = errors

    logger.info(
        "maintenance.cycle_completed",
        expired_requests=report["expired_requests"],
        refunded_transfers=report["refunded_transfers"],
        requeued_releases=report["requeued_releases"],
        errors=len(errors),
    )
    return report


async def maintenance_loop(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: PaymentGateway,
    notifier: Notifier,
    settings: Settings | None = None,
) -> None:
    """Run maintenance cycles forever; cancel the task to stop."""
    settings = settings or get_settings()
    logger.info("maintenance.loop_started", interval=settings.maintenance_interval_seconds)
    while True:
        try:
            await run_maintenance_cycle(session_factory, gateway, notifier, settings)
        except Exception:
            logger.exception("maintenance.cycle_error")
        await asyncio.sleep(settings.maintenance_interval_seconds)
