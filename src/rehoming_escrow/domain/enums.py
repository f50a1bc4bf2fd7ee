"""Domain enumerations for the rehoming escrow service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class Species(enum.StrEnum):
    DOG = "dog"
    CAT = "cat"


class AdoptionType(enum.StrEnum):
    """Whether a listing is given away or sold through escrow."""

    FREE = "free"
    PAID = "paid"


class AdoptionRequestStatus(enum.StrEnum):
    """Lifecycle states of an adoption request.

    Transitions are enforced by AdoptionRequestStateMachine.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_VERIFIED = "payment_verified"
    PET_TRANSFER_PENDING = "pet_transfer_pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# A pet may have at most one request in one of these states.
ACTIVE_REQUEST_STATUSES: frozenset[AdoptionRequestStatus] = frozenset(
    {
        AdoptionRequestStatus.ACCEPTED,
        AdoptionRequestStatus.PAYMENT_PENDING,
        AdoptionRequestStatus.PAYMENT_VERIFIED,
        AdoptionRequestStatus.PET_TRANSFER_PENDING,
    }
)

NON_TERMINAL_REQUEST_STATUSES: frozenset[AdoptionRequestStatus] = ACTIVE_REQUEST_STATUSES | {
    AdoptionRequestStatus.PENDING
}


class TransactionStatus(enum.StrEnum):
    PENDING = "pending"
    HELD = "held"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"


# Statuses that occupy the single live payment slot of a request.
LIVE_TRANSACTION_STATUSES: frozenset[TransactionStatus] = frozenset(
    {TransactionStatus.PENDING, TransactionStatus.HELD, TransactionStatus.COMPLETED}
)


class EscrowStatus(enum.StrEnum):
    """Where the captured funds currently sit. One-way from HELD."""

    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class DisputeStatus(enum.StrEnum):
    NONE = "none"
    OPEN = "open"
    RESOLVED = "resolved"


class DisputeOutcome(enum.StrEnum):
    FAVOR_OWNER = "favor_owner"
    FAVOR_ADOPTER = "favor_adopter"


class ResponseDecision(enum.StrEnum):
    ACCEPT = "accept"
    REJECT = "reject"


class ActorRole(enum.StrEnum):
    """Which side of an adoption a user is acting as."""

    OWNER = "owner"
    ADOPTER = "adopter"


class AggregateType(enum.StrEnum):
    PET = "pet"
    ADOPTION_REQUEST = "adoption_request"
    TRANSACTION = "transaction"
    DISPUTE = "dispute"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the rehoming_events table.

    Every state transition MUST produce exactly one event.
    This is the append-only forensic trail for disputes.
    """

    # Listing events
    LISTING_CREATED = "LISTING_CREATED"
    LISTING_UPDATED = "LISTING_UPDATED"
    LISTING_REMOVED = "LISTING_REMOVED"
    PET_ADOPTED = "PET_ADOPTED"

    # Request events
    REQUEST_CREATED = "REQUEST_CREATED"
    REQUEST_ACCEPTED = "REQUEST_ACCEPTED"
    REQUEST_REJECTED = "REQUEST_REJECTED"
    REQUEST_COMPLETED = "REQUEST_COMPLETED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"

    # Payment events
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_AUTHORIZED = "PAYMENT_AUTHORIZED"
    PAYMENT_HELD = "PAYMENT_HELD"
    PAYMENT_FAILED = "PAYMENT_FAILED"

    # Transfer events
    TRANSFER_CONFIRMED = "TRANSFER_CONFIRMED"
    RELEASE_REQUESTED = "RELEASE_REQUESTED"

    # Settlement events
    FUNDS_RELEASED = "FUNDS_RELEASED"
    FUNDS_REFUNDED = "FUNDS_REFUNDED"

    # Dispute events
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED_OWNER = "DISPUTE_RESOLVED_OWNER"
    DISPUTE_RESOLVED_ADOPTER = "DISPUTE_RESOLVED_ADOPTER"


class OutboxTopic(enum.StrEnum):
    RELEASE_REQUESTED = "escrow.release_requested"
    NOTIFICATION = "notification"


class OutboxStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ErrorKind(enum.StrEnum):
    """Machine-readable error categories returned to callers."""

    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    INVALID_STATE = "InvalidState"
    CONFLICT = "Conflict"
    BLOCKED = "Blocked"
    UPSTREAM_FAILURE = "UpstreamFailure"
