"""Orchestration layer: outbox delivery and timeout maintenance."""

from rehoming_escrow.orchestration.dispatcher import dispatch_outbox
from rehoming_escrow.orchestration.maintenance import maintenance_loop, run_maintenance_cycle

__all__ = ["dispatch_outbox", "maintenance_loop", "run_maintenance_cycle"]
