"""State machine guards for adoption requests, transactions, escrow and disputes.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or the maintenance loop does, an unlisted transition
(e.g., pending -> completed) raises TransitionNotAllowed, which the services
translate into InvalidStateTransitionError.

Machines are instantiated per record at its current status and fired before
the ORM model's status field is updated.

Adoption request transitions:
    pending              -> accepted              (accept_free)
    pending              -> payment_pending       (accept_paid)
    pending              -> rejected              (reject_request)
    payment_pending      -> payment_verified      (payment_authorized)
    payment_verified     -> pet_transfer_pending  (payment_captured)
    payment_verified     -> payment_pending       (payment_declined)
    accepted             -> completed             (handover_completed)
    pet_transfer_pending -> completed             (handover_completed)
    accepted             -> cancelled             (cancel_request)
    payment_pending      -> cancelled             (cancel_request)
    pet_transfer_pending -> cancelled             (cancel_request)

Transaction status transitions:
    pending -> held       (capture_succeeded)
    pending -> failed     (payment_failed)
    held    -> completed  (settle_release)
    held    -> refunded   (settle_refund)

Escrow transitions (one-way):
    held -> released  (release_funds)
    held -> refunded  (refund_funds)

Dispute transitions:
    none -> open      (open_dispute)
    open -> resolved  (resolve_dispute)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from rehoming_escrow.domain.exceptions import InvalidStateTransitionError


class _StatusGuard:
    """Shared construction and introspection for the status guards."""

    entity: str = "entity"

    def __init__(self, current_status: str | None = None) -> None:
        """Initialize the machine at a given status.

        Args:
            current_status: A status value string (e.g., "payment_pending").
                           Defaults to the machine's initial state.
        """
        valid_values = {s.value for s in self.states}
        if current_status is not None and current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the domain enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class AdoptionRequestStateMachine(_StatusGuard, StateMachine):
    """Guards the adoption request lifecycle."""

    entity = "adoption_request"

    PENDING = State("Pending", value="pending", initial=True)
    ACCEPTED = State("Accepted", value="accepted")
    REJECTED = State("Rejected", value="rejected", final=True)
    PAYMENT_PENDING = State("Payment pending", value="payment_pending")
    PAYMENT_VERIFIED = State("Payment verified", value="payment_verified")
    PET_TRANSFER_PENDING = State("Pet transfer pending", value="pet_transfer_pending")
    COMPLETED = State("Completed", value="completed", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    # Owner decision
    accept_free = PENDING.to(ACCEPTED)
    accept_paid = PENDING.to(PAYMENT_PENDING)
    reject_request = PENDING.to(REJECTED)

    # Payment
    payment_authorized = PAYMENT_PENDING.to(PAYMENT_VERIFIED)
    payment_captured = PAYMENT_VERIFIED.to(PET_TRANSFER_PENDING)
    payment_declined = PAYMENT_VERIFIED.to(PAYMENT_PENDING)

    # Handover
    handover_completed = ACCEPTED.to(COMPLETED) | PET_TRANSFER_PENDING.to(COMPLETED)

    # Expiry and refunds
    cancel_request = (
        ACCEPTED.to(CANCELLED)
        | PAYMENT_PENDING.to(CANCELLED)
        | PET_TRANSFER_PENDING.to(CANCELLED)
    )


class TransactionStateMachine(_StatusGuard, StateMachine):
    """Guards the overall transaction status."""

    entity = "transaction"

    PENDING = State("Pending", value="pending", initial=True)
    HELD = State("Held", value="held")
    COMPLETED = State("Completed", value="completed", final=True)
    REFUNDED = State("Refunded", value="refunded", final=True)
    FAILED = State("Failed", value="failed", final=True)

    capture_succeeded = PENDING.to(HELD)
    payment_failed = PENDING.to(FAILED)
    settle_release = HELD.to(COMPLETED)
    settle_refund = HELD.to(REFUNDED)


class EscrowStateMachine(_StatusGuard, StateMachine):
    """Guards where held funds go. There is no way back to HELD."""

    entity = "escrow"

    HELD = State("Held", value="held", initial=True)
    RELEASED = State("Released", value="released", final=True)
    REFUNDED = State("Refunded", value="refunded", final=True)

    release_funds = HELD.to(RELEASED)
    refund_funds = HELD.to(REFUNDED)


class DisputeStateMachine(_StatusGuard, StateMachine):
    """Guards the dispute flag carried by a transaction."""

    entity = "dispute"

    NONE = State("None", value="none", initial=True)
    OPEN = State("Open", value="open")
    RESOLVED = State("Resolved", value="resolved", final=True)

    open_dispute = NONE.to(OPEN)
    resolve_dispute = OPEN.to(RESOLVED)


def validate_transition(
    machine_cls: type[_StatusGuard],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine at ``current_status``, fires the named
    event, and returns the resulting status string.

    Raises:
        InvalidStateTransitionError: If the event is unknown or not allowed
            from the current status.
        ValueError: If the status is not a state of the machine.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise InvalidStateTransitionError(current_status, event_name, entity=machine_cls.entity)

    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(
            current_status, event_name, entity=machine_cls.entity
        ) from err
    return sm.status
