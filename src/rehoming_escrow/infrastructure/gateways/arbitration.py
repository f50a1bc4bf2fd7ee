"""Arbitration adapter.

Disputes are reviewed by people. ManualArbitrationService files the case in
the structured log (picked up by the support queue) and returns a case
reference; the verdict arrives later through the dispute resolution endpoint.
"""

from __future__ import annotations

import uuid

from rehoming_escrow.logging_config import get_logger

logger = get_logger(__name__)


class ManualArbitrationService:
    """Queue disputes for human review."""

    async def submit_case(
        self,
        dispute_id: str,
        transaction_id: str,
        opened_by: str,
        reason: str,
        evidence: str,
    ) -> str:
        case_ref = f"arb_{uuid.uuid4().hex[:16]}"
        logger.info(
            "arbitration.case_submitted",
            case_ref=case_ref,
            dispute_id=dispute_id,
            transaction_id=transaction_id,
            opened_by=opened_by,
            reason=reason,
            has_evidence=bool(evidence),
        )
        return case_ref
