"""Application services: use case orchestration."""

from rehoming_escrow.services.adoption_service import AdoptionService
from rehoming_escrow.services.dispute_service import DisputeService
from rehoming_escrow.services.escrow_service import EscrowService
from rehoming_escrow.services.listing_service import ListingService
from rehoming_escrow.services.transfer_service import TransferService

__all__ = [
    "AdoptionService",
    "DisputeService",
    "EscrowService",
    "ListingService",
    "TransferService",
]
