"""Collaborator adapters: payment gateway, notifier, arbitration.

Each adapter satisfies a Protocol from domain/ports.py.
"""

from rehoming_escrow.infrastructure.gateways.arbitration import ManualArbitrationService
from rehoming_escrow.infrastructure.gateways.notifier import LoggingNotifier
from rehoming_escrow.infrastructure.gateways.payment_gateway import (
    RetryingPaymentGateway,
    SimulatedPaymentGateway,
)

__all__ = [
    "LoggingNotifier",
    "ManualArbitrationService",
    "RetryingPaymentGateway",
    "SimulatedPaymentGateway",
]
