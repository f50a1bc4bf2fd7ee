"""Payment gateway adapters.

Two implementations of the PaymentGateway protocol:
    - SimulatedPaymentGateway: In-process fake that issues random references.
      Payers listed in ``declined_payers`` get a decline on authorize, and
      ``unavailable`` makes every call raise GatewayUnavailableError.
    - RetryingPaymentGateway:  Wraps any gateway with tenacity exponential
      backoff on transport faults. Declines are returned, never retried.

The core never retries on its own; retries live here, on the collaborator side.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rehoming_escrow.domain.ports import GatewayResult, GatewayUnavailableError
from rehoming_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from rehoming_escrow.domain.ports import PaymentGateway

logger = get_logger(__name__)


class SimulatedPaymentGateway:
    """Fake gateway for development, demos and tests."""

    def __init__(
        self,
        declined_payers: set[str] | None = None,
        unavailable: bool = False,
    ) -> None:
        self.declined_payers: set[str] = set(declined_payers or ())
        self.unavailable = unavailable
        self.operations: list[tuple[str, str]] = []
        self._authorized: dict[str, Decimal] = {}

    def _check_available(self, operation: str) -> None:
        if self.unavailable:
            logger.warning("gateway.simulated_outage", operation=operation)
            raise GatewayUnavailableError(f"Simulated outage during {operation}")

    async def authorize(self, amount: Decimal, payer_ref: str) -> GatewayResult:
        self._check_available("authorize")
        if payer_ref in self.declined_payers:
            self.operations.append(("authorize_declined", payer_ref))
            logger.info("gateway.authorize_declined", payer=payer_ref, amount=str(amount))
            return GatewayResult(success=False, error="card_declined")

        gateway_ref = f"pay_{uuid.uuid4().hex[:24]}"
        self._authorized[gateway_ref] = amount
        self.operations.append(("authorize", gateway_ref))
        logger.info("gateway.authorized", gateway_ref=gateway_ref, amount=str(amount))
        return GatewayResult(success=True, gateway_ref=gateway_ref)

    async def capture(self, gateway_ref: str) -> GatewayResult:
        self._check_available("capture")
        if gateway_ref not in self._authorized:
            return GatewayResult(success=False, gateway_ref=gateway_ref, error="unknown_reference")
        self.operations.append(("capture", gateway_ref))
        logger.info("gateway.captured", gateway_ref=gateway_ref)
        return GatewayResult(success=True, gateway_ref=gateway_ref)

    async def refund(self, gateway_ref: str) -> GatewayResult:
        self._check_available("refund")
        if gateway_ref not in self._authorized:
            return GatewayResult(success=False, gateway_ref=gateway_ref, error="unknown_reference")
        self.operations.append(("refund", gateway_ref))
        logger.info("gateway.refunded", gateway_ref=gateway_ref)
        return GatewayResult(success=True, gateway_ref=gateway_ref)

    def calls(self, operation: str) -> list[str]:
        """Return the references passed to a given operation, in call order."""
        return [ref for op, ref in self.operations if op == operation]


class RetryingPaymentGateway:
    """Retry transport faults of an inner gateway with exponential backoff."""

    def __init__(
        self,
        inner: PaymentGateway,
        attempts: int = 3,
        wait_min: float = 0.5,
        wait_max: float = 8.0,
    ) -> None:
        self._inner = inner
        self._attempts = attempts
        self._wait_min = wait_min
        self._wait_max = wait_max

    def _retrying(self, operation: str) -> AsyncRetrying:
        def _log_retry(retry_state) -> None:  # noqa: ANN001
            logger.warning(
                "gateway.retrying",
                operation=operation,
                attempt=retry_state.attempt_number,
                error=str(retry_state.outcome.exception()),
            )

        return AsyncRetrying(
            retry=retry_if_exception_type(GatewayUnavailableError),
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(
                multiplier=self._wait_min, min=self._wait_min, max=self._wait_max
            ),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def authorize(self, amount: Decimal, payer_ref: str) -> GatewayResult:
        return await self._retrying("authorize")(self._inner.authorize, amount, payer_ref)

    async def capture(self, gateway_ref: str) -> GatewayResult:
        return await self._retrying("capture")(self._inner.capture, gateway_ref)

    async def refund(self, gateway_ref: str) -> GatewayResult:
        return await self._retrying("refund")(self._inner.refund, gateway_ref)
