"""
Test Escalation Deduplicator

Unit tests for the fail-open dedup policy and claim semantics.
"""

from unittest.mock import patch

from escalation.engine.deduplicator import ClaimOutcome, EscalationDeduplicator
from escalation.shared.exceptions import DedupStoreError
from escalation.shared.models.dynamo import EscalationRecord


def _store_error(operation: str) -> DedupStoreError:
    return DedupStoreError(operation, "s-1", "critical_alert", "ProvisionedThroughputExceededException")


class TestClaimOutcome:
    """Tests for ClaimOutcome."""

    def test_may_proceed(self):
        """Only a claim held elsewhere stops the escalation."""
        assert ClaimOutcome.CLAIMED.may_proceed is True
        assert ClaimOutcome.STORE_UNAVAILABLE.may_proceed is True
        assert ClaimOutcome.HELD_ELSEWHERE.may_proceed is False


class TestHasEscalated:
    """Tests for EscalationDeduplicator.has_escalated."""

    def test_delegates_to_store(self, frozen_now):
        """The lease is passed through to the store."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch(
            "escalation.engine.deduplicator.has_escalation_record",
            return_value=True,
        ) as mock_check:
            assert dedup.has_escalated("s-1", "critical_alert", now=frozen_now) is True

        mock_check.assert_called_once_with(
            "s-1",
            "critical_alert",
            claim_lease_seconds=120,
            now=frozen_now,
        )

    def test_fails_open(self):
        """A store failure reads as 'not escalated yet'."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch(
            "escalation.engine.deduplicator.has_escalation_record",
            side_effect=_store_error("check"),
        ):
            assert dedup.has_escalated("s-1", "critical_alert") is False

    def test_default_lease_from_config(self):
        """The lease defaults to the engine configuration."""
        assert EscalationDeduplicator().claim_lease_seconds == 300


class TestClaim:
    """Tests for EscalationDeduplicator.claim."""

    def test_claimed(self, frozen_now):
        """A created record means this caller owns the phase."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)
        record = EscalationRecord(session_id="s-1", phase="critical_alert", claimed_at=frozen_now)

        with patch("escalation.engine.deduplicator.claim_escalation", return_value=record):
            outcome = dedup.claim("s-1", "critical_alert", user_id="u-1", now=frozen_now)

        assert outcome == ClaimOutcome.CLAIMED

    def test_held_elsewhere(self):
        """A failed condition means another attempt owns the phase."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch("escalation.engine.deduplicator.claim_escalation", return_value=None):
            assert dedup.claim("s-1", "critical_alert") == ClaimOutcome.HELD_ELSEWHERE

    def test_store_failure_fails_open(self):
        """A store failure lets the escalation proceed."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch(
            "escalation.engine.deduplicator.claim_escalation",
            side_effect=_store_error("claim"),
        ):
            outcome = dedup.claim("s-1", "critical_alert")

        assert outcome == ClaimOutcome.STORE_UNAVAILABLE
        assert outcome.may_proceed is True


class TestRecordEscalation:
    """Tests for EscalationDeduplicator.record_escalation."""

    def test_success(self, frozen_now):
        """Outcome is written with the owner."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch("escalation.engine.deduplicator.complete_escalation") as mock_complete:
            assert dedup.record_escalation(
                "s-1",
                "critical_alert",
                {"succeeded": 2},
                user_id="u-1",
                now=frozen_now,
            ) is True

        mock_complete.assert_called_once_with(
            "s-1",
            "critical_alert",
            {"succeeded": 2},
            user_id="u-1",
            now=frozen_now,
        )

    def test_write_failure_is_reported_not_raised(self):
        """A failed write returns False and does not raise."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch(
            "escalation.engine.deduplicator.complete_escalation",
            side_effect=_store_error("record"),
        ):
            assert dedup.record_escalation("s-1", "critical_alert", {}) is False


class TestRelease:
    """Tests for EscalationDeduplicator.release."""

    def test_release(self):
        """Release delegates to the store."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch("escalation.engine.deduplicator.release_escalation", return_value=True):
            assert dedup.release("s-1", "critical_alert") is True

    def test_release_failure(self):
        """A failed release returns False."""
        dedup = EscalationDeduplicator(claim_lease_seconds=120)

        with patch(
            "escalation.engine.deduplicator.release_escalation",
            side_effect=_store_error("release"),
        ):
            assert dedup.release("s-1", "critical_alert") is False
