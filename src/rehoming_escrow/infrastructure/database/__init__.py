"""Database infrastructure: engine, ORM models, and repositories."""

from rehoming_escrow.infrastructure.database.engine import (
    build_session_factory,
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from rehoming_escrow.infrastructure.database.orm_models import (
    AdoptionRequest,
    Base,
    Dispute,
    OutboxMessage,
    RehomingEvent,
    RehomingPet,
    RehomingTransaction,
    TransferConfirmation,
)
from rehoming_escrow.infrastructure.database.repositories import (
    AdoptionRequestRepository,
    ConfirmationRepository,
    DisputeRepository,
    EventRepository,
    OutboxRepository,
    PetRepository,
    TransactionRepository,
)

__all__ = [
    "AdoptionRequest",
    "Base",
    "Dispute",
    "OutboxMessage",
    "RehomingEvent",
    "RehomingPet",
    "RehomingTransaction",
    "TransferConfirmation",
    "AdoptionRequestRepository",
    "ConfirmationRepository",
    "DisputeRepository",
    "EventRepository",
    "OutboxRepository",
    "PetRepository",
    "TransactionRepository",
    "build_session_factory",
    "close_db",
    "get_async_session",
    "get_session_factory",
    "init_db",
]
