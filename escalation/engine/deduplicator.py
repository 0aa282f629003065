"""
Escalation Deduplicator

Guarantees a (session, phase) pair is escalated at most once.

Failure policy:
- A failed check or claim fails open: the escalation proceeds.
- A failed write after an escalation is logged at error level as a
  correctness risk: the next scan may notify the same recipients again.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from escalation.engine.config import get_engine_config
from escalation.shared.exceptions import DedupStoreError
from escalation.shared.tools.escalations import (
    claim_escalation,
    complete_escalation,
    has_escalation_record,
    release_escalation,
)

log = structlog.get_logger()


class ClaimOutcome(str, Enum):
    """Result of trying to take ownership of a (session, phase) escalation."""

    CLAIMED = "claimed"
    HELD_ELSEWHERE = "held_elsewhere"
    STORE_UNAVAILABLE = "store_unavailable"

    @property
    def may_proceed(self) -> bool:
        return self != ClaimOutcome.HELD_ELSEWHERE


class EscalationDeduplicator:
    """Reads and writes escalation records with the fail-open policy applied."""

    def __init__(self, claim_lease_seconds: int | None = None):
        self.claim_lease_seconds = (
            claim_lease_seconds
            if claim_lease_seconds is not None
            else get_engine_config().claim_lease_seconds
        )

    def has_escalated(
        self,
        session_id: str,
        phase: str,
        *,
        now: datetime | None = None,
    ) -> bool:
        """
        Whether (session, phase) was already escalated or is being escalated.

        Returns False if the record store cannot be read.
        """
        try:
            return has_escalation_record(
                session_id,
                phase,
                claim_lease_seconds=self.claim_lease_seconds,
                now=now,
            )
        except DedupStoreError as e:
            log.warning(
                "dedup_check_failed_failing_open",
                session_id=session_id,
                phase=phase,
                error=str(e),
            )
            return False

    def claim(
        self,
        session_id: str,
        phase: str,
        *,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> ClaimOutcome:
        """Atomically take ownership of (session, phase) before executing it."""
        try:
            record = claim_escalation(
                session_id,
                phase,
                claim_lease_seconds=self.claim_lease_seconds,
                user_id=user_id,
                now=now,
            )
        except DedupStoreError as e:
            log.warning(
                "dedup_claim_failed_failing_open",
                session_id=session_id,
                phase=phase,
                error=str(e),
            )
            return ClaimOutcome.STORE_UNAVAILABLE

        return ClaimOutcome.CLAIMED if record else ClaimOutcome.HELD_ELSEWHERE

    def record_escalation(
        self,
        session_id: str,
        phase: str,
        outcome: dict[str, Any],
        *,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Persist the outcome of an executed phase.

        Returns:
            True if written; False if the write failed (logged as a correctness risk)
        """
        try:
            complete_escalation(
                session_id,
                phase,
                outcome,
                user_id=user_id,
                now=now or datetime.now(timezone.utc),
            )
        except DedupStoreError as e:
            log.error(
                "escalation_record_write_failed",
                session_id=session_id,
                phase=phase,
                error=str(e),
                correctness_risk=True,
            )
            return False
        return True

    def release(self, session_id: str, phase: str) -> bool:
        """Drop an unfinished claim so the next scan retries the phase."""
        try:
            return release_escalation(session_id, phase)
        except DedupStoreError as e:
            log.error(
                "escalation_release_failed",
                session_id=session_id,
                phase=phase,
                error=str(e),
            )
            return False
