"""Initial schema: listings, requests, escrow, confirmations, disputes, audit log, outbox.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

ACTIVE_REQUESTS = (
    "status IN ('accepted', 'payment_pending', 'payment_verified', 'pet_transfer_pending')"
)
OPEN_REQUESTS = (
    "status IN ('accepted', 'payment_pending', 'payment_verified', 'pending', "
    "'pet_transfer_pending')"
)
LIVE_TRANSACTIONS = "status IN ('completed', 'held', 'pending')"


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _partial_index(name: str, table: str, columns: list[str], where: str) -> None:
    op.create_index(
        name,
        table,
        columns,
        unique=True,
        postgresql_where=sa.text(where),
        sqlite_where=sa.text(where),
    )


def upgrade() -> None:
    op.create_table(
        "rehoming_pets",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("species", sa.String(10), nullable=False),
        sa.Column("breed", sa.String(100), nullable=False),
        sa.Column("age", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("image_urls", JSON_TYPE, nullable=False),
        sa.Column("adoption_type", sa.String(10), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column(
            "is_adopted",
            sa.Boolean(),
            nullable=False,
            comment="Set only by escrow release or the free-adoption handover",
        ),
        sa.Column("is_removed", sa.Boolean(), nullable=False),
        sa.Column(
            "active_request_id",
            sa.Uuid(),
            nullable=True,
            comment="The request currently holding this pet (accepted or later)",
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("species IN ('cat', 'dog')", name="ck_pet_species"),
        sa.CheckConstraint("adoption_type IN ('free', 'paid')", name="ck_pet_adoption_type"),
        sa.CheckConstraint(
            "(adoption_type = 'paid' AND price IS NOT NULL AND price > 0) "
            "OR (adoption_type = 'free' AND price IS NULL)",
            name="ck_pet_price_matches_type",
        ),
    )
    op.create_index("idx_pet_owner", "rehoming_pets", ["owner_id"])
    op.create_index("idx_pet_listing_state", "rehoming_pets", ["is_adopted", "is_removed"])

    op.create_table(
        "adoption_requests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("pet_id", sa.Uuid(), nullable=False),
        sa.Column("adopter_id", sa.String(64), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.String(24),
            nullable=False,
            comment="Guarded by AdoptionRequestStateMachine",
        ),
        _timestamp("status_changed_at"),
        sa.Column("payment_attempts", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["pet_id"], ["rehoming_pets.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "status IN ('accepted', 'cancelled', 'completed', 'payment_pending', "
            "'payment_verified', 'pending', 'pet_transfer_pending', 'rejected')",
            name="ck_request_valid_status",
        ),
    )
    _partial_index("uq_request_active_per_pet", "adoption_requests", ["pet_id"], ACTIVE_REQUESTS)
    _partial_index(
        "uq_request_open_per_adopter",
        "adoption_requests",
        ["pet_id", "adopter_id"],
        OPEN_REQUESTS,
    )
    op.create_index("idx_request_adopter", "adoption_requests", ["adopter_id"])
    op.create_index(
        "idx_request_status_changed", "adoption_requests", ["status", "status_changed_at"]
    )

    op.create_table(
        "rehoming_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("adoption_request_id", sa.Uuid(), nullable=False),
        sa.Column("pet_id", sa.Uuid(), nullable=False),
        sa.Column("from_user", sa.String(64), nullable=False, comment="Adopter"),
        sa.Column("to_user", sa.String(64), nullable=False, comment="Pet owner"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("fee_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column(
            "escrow_status",
            sa.String(16),
            nullable=True,
            comment="Null until funds are captured",
        ),
        sa.Column("dispute_status", sa.String(16), nullable=False),
        sa.Column("gateway_ref", sa.String(128), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        _timestamp("held_at", nullable=True),
        _timestamp("released_at", nullable=True),
        _timestamp("refunded_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["adoption_request_id"], ["adoption_requests.id"], ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(["pet_id"], ["rehoming_pets.id"], ondelete="RESTRICT"),
        sa.CheckConstraint(
            "status IN ('completed', 'failed', 'held', 'pending', 'refunded')",
            name="ck_tx_valid_status",
        ),
        sa.CheckConstraint(
            "escrow_status IS NULL OR escrow_status IN ('held', 'refunded', 'released')",
            name="ck_tx_valid_escrow_status",
        ),
        sa.CheckConstraint(
            "dispute_status IN ('none', 'open', 'resolved')",
            name="ck_tx_valid_dispute_status",
        ),
        sa.CheckConstraint("amount > 0", name="ck_tx_positive_amount"),
        sa.CheckConstraint("net_amount = amount - platform_fee", name="ck_tx_net_amount"),
    )
    _partial_index(
        "uq_tx_live_per_request",
        "rehoming_transactions",
        ["adoption_request_id"],
        LIVE_TRANSACTIONS,
    )
    op.create_index("idx_tx_from_user", "rehoming_transactions", ["from_user"])
    op.create_index("idx_tx_to_user", "rehoming_transactions", ["to_user"])
    op.create_index("idx_tx_status_held_at", "rehoming_transactions", ["status", "held_at"])

    op.create_table(
        "transfer_confirmations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("adoption_request_id", sa.Uuid(), nullable=False),
        sa.Column(
            "transaction_id", sa.Uuid(), nullable=True, comment="Null for free adoptions"
        ),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("adopter_id", sa.String(64), nullable=False),
        sa.Column("owner_confirmed", sa.Boolean(), nullable=False),
        sa.Column("adopter_confirmed", sa.Boolean(), nullable=False),
        _timestamp("owner_confirmed_at", nullable=True),
        _timestamp("adopter_confirmed_at", nullable=True),
        sa.Column("owner_message", sa.Text(), nullable=True),
        sa.Column("adopter_message", sa.Text(), nullable=True),
        _timestamp("release_requested_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("adoption_request_id"),
        sa.ForeignKeyConstraint(
            ["adoption_request_id"], ["adoption_requests.id"], ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["transaction_id"], ["rehoming_transactions.id"], ondelete="RESTRICT"
        ),
    )
    op.create_index("idx_confirmation_transaction", "transfer_confirmations", ["transaction_id"])
    op.create_index("idx_confirmation_owner", "transfer_confirmations", ["owner_id"])
    op.create_index("idx_confirmation_adopter", "transfer_confirmations", ["adopter_id"])

    op.create_table(
        "disputes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("transaction_id", sa.Uuid(), nullable=False),
        sa.Column("opened_by", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("evidence", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("outcome", sa.String(16), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("arbitration_ref", sa.String(128), nullable=True),
        _timestamp("opened_at"),
        _timestamp("resolved_at", nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
        sa.ForeignKeyConstraint(
            ["transaction_id"], ["rehoming_transactions.id"], ondelete="RESTRICT"
        ),
        sa.CheckConstraint("status IN ('open', 'resolved')", name="ck_dispute_valid_status"),
        sa.CheckConstraint(
            "outcome IS NULL OR outcome IN ('favor_adopter', 'favor_owner')",
            name="ck_dispute_valid_outcome",
        ),
    )

    op.create_table(
        "rehoming_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("aggregate_type", sa.String(24), nullable=False),
        sa.Column("aggregate_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(24), nullable=True),
        sa.Column("new_status", sa.String(24), nullable=True),
        sa.Column("actor", sa.String(64), nullable=False),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_event_aggregate", "rehoming_events", ["aggregate_type", "aggregate_id"]
    )
    op.create_index("idx_event_type", "rehoming_events", ["event_type"])
    op.create_index("idx_event_created_at", "rehoming_events", ["created_at"])

    op.create_table(
        "outbox_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("topic", sa.String(40), nullable=False),
        sa.Column("aggregate_id", sa.String(64), nullable=False),
        sa.Column("payload", JSON_TYPE, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("processed_at", nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('failed', 'pending', 'processed', 'skipped')",
            name="ck_outbox_valid_status",
        ),
    )
    op.create_index("idx_outbox_status_created", "outbox_messages", ["status", "created_at"])
    op.create_index("idx_outbox_aggregate", "outbox_messages", ["aggregate_id"])


def downgrade() -> None:
    op.drop_table("outbox_messages")
    op.drop_table("rehoming_events")
    op.drop_table("disputes")
    op.drop_table("transfer_confirmations")
    op.drop_table("rehoming_transactions")
    op.drop_table("adoption_requests")
    op.drop_table("rehoming_pets")
