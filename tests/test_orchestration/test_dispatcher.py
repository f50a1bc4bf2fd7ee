"""Tests for the outbox dispatcher."""

from __future__ import annotations

import pytest

from rehoming_escrow.domain.enums import OutboxStatus, OutboxTopic
from rehoming_escrow.infrastructure.database.repositories import OutboxRepository
from rehoming_escrow.orchestration.dispatcher import dispatch_outbox


async def _messages(session_factory, aggregate_id, topic=None) -> list:
    async with session_factory() as check:
        return await OutboxRepository(check).get_by_aggregate(aggregate_id, topic)


class TestNotifications:
    @pytest.mark.asyncio
    async def test_delivers_committed_notifications(
        self, session_factory, gateway, notifier, settings, flow
    ) -> None:
        pet = await flow.listing()
        await flow.request(pet)

        report = await dispatch_outbox(session_factory, gateway, notifier, settings)

        assert report["processed"] == 1
        assert notifier.sent[0][0] == "owner-1"
        assert notifier.sent[0][1] == "adoption_request.received"
        assert notifier.sent[0][2]["pet_id"] == str(pet.id)
        (message,) = await _messages(session_factory, "owner-1")
        assert message.status == OutboxStatus.PROCESSED
        assert message.processed_at is not None

    @pytest.mark.asyncio
    async def test_notifier_outage_retries_then_fails(
        self, session_factory, gateway, notifier, settings, flow
    ) -> None:
        pet = await flow.listing()
        await flow.request(pet)
        notifier.fail = True

        first = await dispatch_outbox(session_factory, gateway, notifier, settings)
        assert first["retrying"] == 1
        (message,) = await _messages(session_factory, "owner-1")
        assert message.status == OutboxStatus.PENDING
        assert message.attempts == 1
        assert "notification channel down" in message.last_error

        await dispatch_outbox(session_factory, gateway, notifier, settings)
        last = await dispatch_outbox(session_factory, gateway, notifier, settings)
        assert last["failed"] == 1
        (message,) = await _messages(session_factory, "owner-1")
        assert message.status == OutboxStatus.FAILED
        assert message.attempts == settings.outbox_max_attempts

        # Failed messages are not picked up again
        assert await dispatch_outbox(session_factory, gateway, notifier, settings) == {
            "processed": 0,
            "skipped": 0,
            "retrying": 0,
            "failed": 0,
        }

    @pytest.mark.asyncio
    async def test_limit_caps_the_batch(
        self, session_factory, gateway, notifier, settings, flow
    ) -> None:
        pet = await flow.listing()
        await flow.request(pet, "adopter-1")
        await flow.request(pet, "adopter-2")

        report = await dispatch_outbox(session_factory, gateway, notifier, settings, limit=1)
        assert report["processed"] == 1
        assert len(notifier.sent) == 1


class TestReleaseRequests:
    @pytest.mark.asyncio
    async def test_release_is_performed(
        self, session_factory, gateway, notifier, settings, flow
    ) -> None:
        _, _, tx = await flow.held()
        await flow.confirm_both(tx)

        await dispatch_outbox(session_factory, gateway, notifier, settings)

        (message,) = await _messages(session_factory, tx.id, OutboxTopic.RELEASE_REQUESTED)
        assert message.status == OutboxStatus.PROCESSED
        # Notifications queued by the release go out in the same pass
        assert "escrow.funds_released" in notifier.events_for("owner-1")
        assert "adoption.completed" in notifier.events_for("adopter-1")

    @pytest.mark.asyncio
    async def test_refunded_transaction_is_skipped(
        self, session, session_factory, gateway, notifier, settings, flow
    ) -> None:
        _, _, tx = await flow.held()
        await flow.confirm_both(tx)
        await flow.escrow().refund(
            tx.id, reason="dispute_resolved_for_adopter", actor="ARBITRATION", by_arbitration=True
        )
        await session.commit()

        report = await dispatch_outbox(session_factory, gateway, notifier, settings)

        assert report["skipped"] == 1
        (message,) = await _messages(session_factory, tx.id, OutboxTopic.RELEASE_REQUESTED)
        assert message.status == OutboxStatus.SKIPPED
        assert message.last_error

    @pytest.mark.asyncio
    async def test_unknown_topic_fails_after_max_attempts(
        self, session, session_factory, gateway, notifier, settings
    ) -> None:
        # Store a topic no handler knows
        row = await OutboxRepository(session).enqueue(
            OutboxTopic.NOTIFICATION, "ops", {"user_id": "ops"}
        )
        row.topic = "legacy.topic"
        await session.commit()

        for _ in range(settings.outbox_max_attempts):
            await dispatch_outbox(session_factory, gateway, notifier, settings)

        (stored,) = await _messages(session_factory, "ops")
        assert stored.status == OutboxStatus.FAILED
        assert "Unknown outbox topic" in stored.last_error
