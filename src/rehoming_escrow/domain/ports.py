"""Collaborator protocols consumed by the core.

These are Protocols (structural subtyping) so adapters don't need to inherit
from a base class; they just need to match the shape.

The domain layer has ZERO imports from payment SDKs, mailers, or any
external service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal


class GatewayUnavailableError(Exception):
    """Raised by gateway adapters on transport faults (timeouts, 5xx).

    Declines are not exceptions; they come back as GatewayResult(success=False).
    """


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of a payment gateway call.

    Attributes:
        success: Whether the gateway accepted the operation.
        gateway_ref: Reference for follow-up calls (capture, refund).
        error: Decline reason when success is False.
    """

    success: bool
    gateway_ref: str | None = None
    error: str | None = None


@runtime_checkable
class PaymentGateway(Protocol):
    """Opaque payment capability.

    Concrete implementations:
        - infrastructure/gateways/payment_gateway.py  (simulated + retry wrapper)
    """

    async def authorize(self, amount: Decimal, payer_ref: str) -> GatewayResult: ...

    async def capture(self, gateway_ref: str) -> GatewayResult: ...

    async def refund(self, gateway_ref: str) -> GatewayResult: ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget user notification channel."""

    async def send(self, user_id: str, event: str, data: dict) -> None: ...


@runtime_checkable
class ArbitrationService(Protocol):
    """Human/manual dispute review.

    The case is submitted when a dispute opens; the verdict comes back later
    through the dispute resolution endpoint.
    """

    async def submit_case(
        self,
        dispute_id: str,
        transaction_id: str,
        opened_by: str,
        reason: str,
        evidence: str,
    ) -> str:
        """Submit a case for review and return the arbitration reference."""
        ...
