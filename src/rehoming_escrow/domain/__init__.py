"""Domain layer: pure business logic with zero framework dependencies."""

from rehoming_escrow.domain.enums import (
    ActorRole,
    AdoptionRequestStatus,
    AdoptionType,
    DisputeOutcome,
    DisputeStatus,
    ErrorKind,
    EscrowStatus,
    EventType,
    TransactionStatus,
)
from rehoming_escrow.domain.exceptions import (
    BlockedError,
    ConflictError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    RehomingError,
    UpstreamFailureError,
)
from rehoming_escrow.domain.money import FeeSplit, split_fee
from rehoming_escrow.domain.ports import (
    ArbitrationService,
    GatewayResult,
    Notifier,
    PaymentGateway,
)
from rehoming_escrow.domain.state_machine import (
    AdoptionRequestStateMachine,
    DisputeStateMachine,
    EscrowStateMachine,
    TransactionStateMachine,
    validate_transition,
)

__all__ = [
    "ActorRole",
    "AdoptionRequestStatus",
    "AdoptionType",
    "DisputeOutcome",
    "DisputeStatus",
    "ErrorKind",
    "EscrowStatus",
    "EventType",
    "TransactionStatus",
    "BlockedError",
    "ConflictError",
    "ForbiddenError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "RehomingError",
    "UpstreamFailureError",
    "FeeSplit",
    "split_fee",
    "ArbitrationService",
    "GatewayResult",
    "Notifier",
    "PaymentGateway",
    "AdoptionRequestStateMachine",
    "DisputeStateMachine",
    "EscrowStateMachine",
    "TransactionStateMachine",
    "validate_transition",
]
