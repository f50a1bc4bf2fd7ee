"""Tests for domain enumerations."""

from __future__ import annotations

from rehoming_escrow.domain.enums import (
    ACTIVE_REQUEST_STATUSES,
    LIVE_TRANSACTION_STATUSES,
    NON_TERMINAL_REQUEST_STATUSES,
    AdoptionRequestStatus,
    EscrowStatus,
    ErrorKind,
    EventType,
    OutboxTopic,
    TransactionStatus,
)


class TestAdoptionRequestStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "pending", "accepted", "rejected", "payment_pending",
            "payment_verified", "pet_transfer_pending", "completed", "cancelled",
        }
        actual = {s.value for s in AdoptionRequestStatus}
        assert actual == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(AdoptionRequestStatus.PENDING, str)
        assert AdoptionRequestStatus.PAYMENT_PENDING == "payment_pending"

    def test_active_set(self) -> None:
        assert {s.value for s in ACTIVE_REQUEST_STATUSES} == {
            "accepted", "payment_pending", "payment_verified", "pet_transfer_pending",
        }

    def test_pending_is_open_but_not_active(self) -> None:
        assert AdoptionRequestStatus.PENDING in NON_TERMINAL_REQUEST_STATUSES
        assert AdoptionRequestStatus.PENDING not in ACTIVE_REQUEST_STATUSES
        assert AdoptionRequestStatus.REJECTED not in NON_TERMINAL_REQUEST_STATUSES


class TestTransactionStatus:
    def test_failed_attempts_do_not_occupy_the_live_slot(self) -> None:
        assert TransactionStatus.FAILED not in LIVE_TRANSACTION_STATUSES
        assert TransactionStatus.REFUNDED not in LIVE_TRANSACTION_STATUSES
        assert TransactionStatus.HELD in LIVE_TRANSACTION_STATUSES

    def test_escrow_statuses(self) -> None:
        assert {s.value for s in EscrowStatus} == {"held", "released", "refunded"}


class TestEventType:
    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.FUNDS_RELEASED, str)
        assert EventType.FUNDS_RELEASED == "FUNDS_RELEASED"

    def test_event_types_are_unique(self) -> None:
        values = [e.value for e in EventType]
        assert len(values) == len(set(values))


class TestOutboxTopic:
    def test_topics(self) -> None:
        assert OutboxTopic.RELEASE_REQUESTED == "escrow.release_requested"
        assert OutboxTopic.NOTIFICATION == "notification"


class TestErrorKind:
    def test_kinds(self) -> None:
        assert {k.value for k in ErrorKind} == {
            "NotFound", "Forbidden", "InvalidState", "Conflict", "Blocked", "UpstreamFailure",
        }
