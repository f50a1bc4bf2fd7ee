"""SQLAlchemy 2.0 ORM models for the rehoming escrow service.

Tables:
    1. rehoming_pets           - Listings offered for adoption.
    2. adoption_requests       - Adopter requests and their negotiation state.
    3. rehoming_transactions   - Escrowed payments (never deleted).
    4. transfer_confirmations  - Owner/adopter handover acknowledgements.
    5. disputes                - Objections against a transaction.
    6. rehoming_events         - Append-only audit log of every state transition.
    7. outbox_messages         - Transactional outbox (release triggers, notifications).

Design decisions:
    - UUIDs as primary keys; user ids are opaque strings from the auth layer.
    - Decimal for money (no floating point rounding errors).
    - Every mutable row carries a `version` column wired into the mapper's
      version_id_col, so each UPDATE is a compare-and-swap.
    - Partial unique indexes backstop the cross-row invariants
      (one active request per pet, one live transaction per request).
    - CHECK constraints keep status columns inside their enums.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rehoming_escrow.domain.enums import (
    ACTIVE_REQUEST_STATUSES,
    LIVE_TRANSACTION_STATUSES,
    NON_TERMINAL_REQUEST_STATUSES,
    AdoptionRequestStatus,
    DisputeStatus,
    EscrowStatus,
    OutboxStatus,
    TransactionStatus,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _sql_in(values) -> str:  # noqa: ANN001
    return ", ".join(f"'{v.value}'" for v in sorted(values))


def _status_check(column: str, enum_cls, name: str) -> CheckConstraint:  # noqa: ANN001
    return CheckConstraint(f"{column} IN ({_sql_in(enum_cls)})", name=name)


def _partial_where(column: str, values) -> dict:  # noqa: ANN001
    clause = f"{column} IN ({_sql_in(values)})"
    return {"postgresql_where": text(clause), "sqlite_where": text(clause)}


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. rehoming_pets
# ---------------------------------------------------------------------------
class RehomingPet(Base):
    """A pet listed by its owner for adoption."""

    __tablename__ = "rehoming_pets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Listing details ---
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    species: Mapped[str] = mapped_column(String(10), nullable=False)
    breed: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    age: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_urls: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # --- Adoption terms ---
    adoption_type: Mapped[str] = mapped_column(String(10), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True, default=None)

    # --- Workflow flags ---
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_adopted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Set only by escrow release or the free-adoption handover",
    )
    is_removed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        default=None,
        comment="The request currently holding this pet (accepted or later)",
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("species IN ('cat', 'dog')", name="ck_pet_species"),
        CheckConstraint("adoption_type IN ('free', 'paid')", name="ck_pet_adoption_type"),
        CheckConstraint(
            "(adoption_type = 'paid' AND price IS NOT NULL AND price > 0) "
            "OR (adoption_type = 'free' AND price IS NULL)",
            name="ck_pet_price_matches_type",
        ),
        Index("idx_pet_owner", "owner_id"),
        Index("idx_pet_listing_state", "is_adopted", "is_removed"),
    )

    @property
    def is_available(self) -> bool:
        return not self.is_adopted and not self.is_removed and self.active_request_id is None

    def __repr__(self) -> str:
        return f"<RehomingPet id={self.id} type={self.adoption_type} adopted={self.is_adopted}>"


# ---------------------------------------------------------------------------
# 2. adoption_requests
# ---------------------------------------------------------------------------
class AdoptionRequest(Base):
    """An adopter's request to adopt a listed pet."""

    __tablename__ = "adoption_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rehoming_pets.id", ondelete="RESTRICT"), nullable=False
    )
    adopter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=AdoptionRequestStatus.PENDING.value,
        comment="Guarded by AdoptionRequestStateMachine",
    )
    status_changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    payment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        _status_check("status", AdoptionRequestStatus, "ck_request_valid_status"),
        Index(
            "uq_request_active_per_pet",
            "pet_id",
            unique=True,
            **_partial_where("status", ACTIVE_REQUEST_STATUSES),
        ),
        Index(
            "uq_request_open_per_adopter",
            "pet_id",
            "adopter_id",
            unique=True,
            **_partial_where("status", NON_TERMINAL_REQUEST_STATUSES),
        ),
        Index("idx_request_adopter", "adopter_id"),
        Index("idx_request_status_changed", "status", "status_changed_at"),
    )

    def __repr__(self) -> str:
        return f"<AdoptionRequest id={self.id} pet={self.pet_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. rehoming_transactions
# ---------------------------------------------------------------------------
class RehomingTransaction(Base):
    """An escrowed payment from adopter to owner."""

    __tablename__ = "rehoming_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    adoption_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("adoption_requests.id", ondelete="RESTRICT"), nullable=False
    )
    pet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rehoming_pets.id", ondelete="RESTRICT"), nullable=False
    )

    # --- Participants ---
    from_user: Mapped[str] = mapped_column(String(64), nullable=False, comment="Adopter")
    to_user: Mapped[str] = mapped_column(String(64), nullable=False, comment="Pet owner")

    # --- Financials (immutable once written) ---
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    fee_rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # --- Status (each guarded by its own state machine) ---
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TransactionStatus.PENDING.value
    )
    escrow_status: Mapped[str | None] = mapped_column(
        String(16), nullable=True, default=None, comment="Null until funds are captured"
    )
    dispute_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DisputeStatus.NONE.value
    )

    # --- Gateway bookkeeping ---
    gateway_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Timestamps ---
    held_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        _status_check("status", TransactionStatus, "ck_tx_valid_status"),
        CheckConstraint(
            f"escrow_status IS NULL OR escrow_status IN ({_sql_in(EscrowStatus)})",
            name="ck_tx_valid_escrow_status",
        ),
        _status_check("dispute_status", DisputeStatus, "ck_tx_valid_dispute_status"),
        CheckConstraint("amount > 0", name="ck_tx_positive_amount"),
        CheckConstraint("net_amount = amount - platform_fee", name="ck_tx_net_amount"),
        Index(
            "uq_tx_live_per_request",
            "adoption_request_id",
            unique=True,
            **_partial_where("status", LIVE_TRANSACTION_STATUSES),
        ),
        Index("idx_tx_from_user", "from_user"),
        Index("idx_tx_to_user", "to_user"),
        Index("idx_tx_status_held_at", "status", "held_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RehomingTransaction id={self.id} status={self.status} "
            f"escrow={self.escrow_status} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# 4. transfer_confirmations
# ---------------------------------------------------------------------------
class TransferConfirmation(Base):
    """Independent owner/adopter acknowledgements that the pet changed hands."""

    __tablename__ = "transfer_confirmations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    adoption_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("adoption_requests.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("rehoming_transactions.id", ondelete="RESTRICT"),
        nullable=True,
        comment="Null for free adoptions",
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    adopter_id: Mapped[str] = mapped_column(String(64), nullable=False)

    owner_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    adopter_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    owner_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    adopter_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    owner_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    adopter_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_confirmation_transaction", "transaction_id"),
        Index("idx_confirmation_owner", "owner_id"),
        Index("idx_confirmation_adopter", "adopter_id"),
    )

    @property
    def both_confirmed(self) -> bool:
        return self.owner_confirmed and self.adopter_confirmed

    def __repr__(self) -> str:
        return (
            f"<TransferConfirmation request={self.adoption_request_id} "
            f"owner={self.owner_confirmed} adopter={self.adopter_confirmed}>"
        )


# ---------------------------------------------------------------------------
# 5. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A formal objection against a transaction, pending arbitration."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rehoming_transactions.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    opened_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    arbitration_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    opened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("status IN ('open', 'resolved')", name="ck_dispute_valid_status"),
        CheckConstraint(
            "outcome IS NULL OR outcome IN ('favor_adopter', 'favor_owner')",
            name="ck_dispute_valid_outcome",
        ),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} tx={self.transaction_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 6. rehoming_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class RehomingEvent(Base):
    """Immutable audit record of a state transition on any aggregate.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "rehoming_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    aggregate_type: Mapped[str] = mapped_column(String(24), nullable=False)
    aggregate_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(24), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(24), nullable=True)
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default="SYSTEM")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata", JSONType, nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_aggregate", "aggregate_type", "aggregate_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RehomingEvent {self.aggregate_type}:{self.aggregate_id} "
            f"type={self.event_type} {self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 7. outbox_messages
# ---------------------------------------------------------------------------
class OutboxMessage(Base):
    """A side effect recorded in the same transaction as the state change.

    Consumed at-least-once by orchestration/dispatcher.py after commit.
    """

    __tablename__ = "outbox_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    topic: Mapped[str] = mapped_column(String(40), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=OutboxStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        _status_check("status", OutboxStatus, "ck_outbox_valid_status"),
        Index("idx_outbox_status_created", "status", "created_at"),
        Index("idx_outbox_aggregate", "aggregate_id"),
    )

    def __repr__(self) -> str:
        return f"<OutboxMessage id={self.id} topic={self.topic} status={self.status}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (RehomingPet, AdoptionRequest, RehomingTransaction, TransferConfirmation):
    event.listen(_model, "before_update", _set_updated_at)
