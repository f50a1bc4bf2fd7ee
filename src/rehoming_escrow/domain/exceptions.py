"""Domain exceptions for the rehoming escrow service.

These exceptions are framework-agnostic and represent business rule violations.
Every exception carries an ErrorKind; the API layer's middleware translates
the kind into an HTTP status and a structured JSON body.
"""

from rehoming_escrow.domain.enums import ErrorKind


class RehomingError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.CONFLICT

    def __init__(
        self,
        message: str,
        code: str = "REHOMING_ERROR",
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# --- NotFound ---


class NotFoundError(RehomingError):
    kind = ErrorKind.NOT_FOUND


class ListingNotFoundError(NotFoundError):
    """Raised when a pet listing does not exist or was removed."""

    def __init__(self, pet_id: str) -> None:
        super().__init__(
            message=f"Listing not found: {pet_id}",
            code="LISTING_NOT_FOUND",
            details={"pet_id": pet_id},
        )


class AdoptionRequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str) -> None:
        super().__init__(
            message=f"Adoption request not found: {request_id}",
            code="ADOPTION_REQUEST_NOT_FOUND",
            details={"request_id": request_id},
        )


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Transaction not found: {transaction_id}",
            code="TRANSACTION_NOT_FOUND",
            details={"transaction_id": transaction_id},
        )


class DisputeNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"No dispute recorded for transaction: {transaction_id}",
            code="DISPUTE_NOT_FOUND",
            details={"transaction_id": transaction_id},
        )


# --- Forbidden ---


class ForbiddenError(RehomingError):
    kind = ErrorKind.FORBIDDEN


class NotListingOwnerError(ForbiddenError):
    """Raised when someone other than the owner manages a listing or its requests."""

    def __init__(self, pet_id: str, actor_id: str) -> None:
        super().__init__(
            message=f"User {actor_id} does not own listing {pet_id}",
            code="NOT_LISTING_OWNER",
            details={"pet_id": pet_id, "actor_id": actor_id},
        )


class OwnListingRequestError(ForbiddenError):
    def __init__(self, pet_id: str) -> None:
        super().__init__(
            message=f"Owners cannot request to adopt their own listing: {pet_id}",
            code="OWN_LISTING_REQUEST",
            details={"pet_id": pet_id},
        )


class NotPartyError(ForbiddenError):
    """Raised when an actor is not a party (in the claimed role) to a request or transaction."""

    def __init__(self, entity_id: str, actor_id: str, role: str | None = None) -> None:
        suffix = f" as {role}" if role else ""
        super().__init__(
            message=f"User {actor_id} is not a party to {entity_id}{suffix}",
            code="NOT_A_PARTY",
            details={"entity_id": entity_id, "actor_id": actor_id, "role": role},
        )


class InvalidArbitrationKeyError(ForbiddenError):
    def __init__(self) -> None:
        super().__init__(
            message="Dispute resolution requires a valid arbitration key",
            code="INVALID_ARBITRATION_KEY",
        )


# --- InvalidState ---


class InvalidStateTransitionError(RehomingError):
    """Raised when an attempted state transition is not allowed.

    Example: pending -> completed (must go through acceptance and payment).
    """

    kind = ErrorKind.INVALID_STATE

    def __init__(self, current_state: str, attempted: str, entity: str = "entity") -> None:
        super().__init__(
            message=f"Invalid {entity} transition: {attempted} is not allowed from {current_state}",
            code="INVALID_STATE_TRANSITION",
            details={"entity": entity, "current_state": current_state, "attempted": attempted},
        )
        self.current_state = current_state
        self.attempted_state = attempted


# --- Conflict ---


class ConflictError(RehomingError):
    kind = ErrorKind.CONFLICT


class InvalidListingError(ConflictError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_LISTING")


class ListingAlreadyAdoptedError(ConflictError):
    def __init__(self, pet_id: str) -> None:
        super().__init__(
            message=f"Pet has already been adopted: {pet_id}",
            code="PET_ALREADY_ADOPTED",
            details={"pet_id": pet_id},
        )


class DuplicateAdoptionRequestError(ConflictError):
    def __init__(self, pet_id: str, adopter_id: str) -> None:
        super().__init__(
            message=f"User {adopter_id} already has an open request for pet {pet_id}",
            code="DUPLICATE_ADOPTION_REQUEST",
            details={"pet_id": pet_id, "adopter_id": adopter_id},
        )


class ListingAlreadyAllocatedError(ConflictError):
    """Raised when accepting a request for a pet that another request already holds."""

    def __init__(self, pet_id: str, active_request_id: str | None = None) -> None:
        super().__init__(
            message=f"Pet {pet_id} already has an accepted adoption request",
            code="PET_ALREADY_ALLOCATED",
            details={"pet_id": pet_id, "active_request_id": active_request_id},
        )


class PaymentAmountMismatchError(ConflictError):
    def __init__(self, expected: str, received: str) -> None:
        super().__init__(
            message=f"Payment amount {received} does not match the listing price {expected}",
            code="PAYMENT_AMOUNT_MISMATCH",
            details={"expected": expected, "received": received},
        )


class DisputeAlreadyExistsError(ConflictError):
    def __init__(self, transaction_id: str, dispute_status: str) -> None:
        super().__init__(
            message=f"Transaction {transaction_id} already has a {dispute_status} dispute",
            code="DISPUTE_ALREADY_EXISTS",
            details={"transaction_id": transaction_id, "dispute_status": dispute_status},
        )


class ConcurrentUpdateError(ConflictError):
    """Raised when an optimistic version check or uniqueness backstop loses a race."""

    def __init__(
        self, message: str = "The record was modified concurrently; reload and retry"
    ) -> None:
        super().__init__(message=message, code="CONCURRENT_UPDATE")


class DuplicateOperationError(ConflictError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )


# --- Blocked ---


class BlockedError(RehomingError):
    kind = ErrorKind.BLOCKED


class DisputeOpenError(BlockedError):
    """Raised when fund movement is attempted while a dispute is open."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Funds for transaction {transaction_id} are frozen by an open dispute",
            code="DISPUTE_OPEN",
            details={"transaction_id": transaction_id},
        )


class TransferNotConfirmedError(BlockedError):
    def __init__(self, transaction_id: str, owner_confirmed: bool, adopter_confirmed: bool) -> None:
        super().__init__(
            message=f"Transfer for transaction {transaction_id} is not confirmed by both parties",
            code="TRANSFER_NOT_CONFIRMED",
            details={
                "transaction_id": transaction_id,
                "owner_confirmed": owner_confirmed,
                "adopter_confirmed": adopter_confirmed,
            },
        )


class TransferAlreadyConfirmedError(BlockedError):
    """Raised when a timeout refund finds the handover confirmed by both parties."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=(
                f"Transfer for transaction {transaction_id} is confirmed by both parties; "
                "funds are due for release"
            ),
            code="TRANSFER_CONFIRMED",
            details={"transaction_id": transaction_id},
        )


class ListingLockedError(BlockedError):
    """Raised when a listing cannot be edited or removed because requests depend on it."""

    def __init__(self, pet_id: str, reason: str) -> None:
        super().__init__(
            message=f"Listing {pet_id} is locked: {reason}",
            code="LISTING_LOCKED",
            details={"pet_id": pet_id},
        )


# --- UpstreamFailure ---


class UpstreamFailureError(RehomingError):
    kind = ErrorKind.UPSTREAM_FAILURE


class PaymentGatewayError(UpstreamFailureError):
    """Raised when the payment gateway declines or cannot be reached."""

    def __init__(self, message: str, operation: str, transaction_id: str | None = None) -> None:
        super().__init__(
            message=message,
            code="PAYMENT_GATEWAY_ERROR",
            details={"operation": operation, "transaction_id": transaction_id},
        )
        self.operation = operation
        self.transaction_id = transaction_id


class ArbitrationUnavailableError(UpstreamFailureError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="ARBITRATION_UNAVAILABLE")
