"""
Test Phase Calculator

Unit tests for deriving escalation phases from due instants and time.
Tests cover threshold boundaries, inactive sessions, overrides and the
status view.
"""

from datetime import timedelta

import pytest

from escalation.engine.phases import (
    THRESHOLD_PHASES,
    EscalationPhase,
    PhaseThresholds,
    calculate_phase,
    get_escalation_status,
    minutes_overdue,
    needs_escalation,
    next_phase,
    resolve_thresholds,
    time_until_next_phase,
)
from escalation.shared.state_machine import SessionStatus


class TestPhaseThresholds:
    """Tests for PhaseThresholds."""

    def test_defaults(self):
        """Default thresholds are 0/15/60/1440 minutes."""
        thresholds = PhaseThresholds()
        assert [thresholds.minutes_for(p) for p in THRESHOLD_PHASES] == [0, 15, 60, 1440]

    def test_descending_order(self):
        """Most severe phase is evaluated first."""
        phases = [phase for phase, _ in PhaseThresholds().descending()]
        assert phases == list(reversed(THRESHOLD_PHASES))

    def test_rejects_non_ascending(self):
        """Thresholds must not decrease with severity."""
        with pytest.raises(ValueError, match="ascending"):
            PhaseThresholds(medium_alert=90, critical_alert=60)

    def test_rejects_negative(self):
        """Thresholds must be non-negative."""
        with pytest.raises(ValueError, match="non-negative"):
            PhaseThresholds(soft_warning=-1)

    def test_with_overrides_ignores_unknown_keys(self):
        """Only known phase names are overridden."""
        thresholds = PhaseThresholds().with_overrides({"critical_alert": 30, "bogus": 5})
        assert thresholds.critical_alert == 30
        assert thresholds.medium_alert == 15

    def test_from_config_reads_environment(self, monkeypatch):
        """Configured thresholds come from ESCALATION_ variables."""
        from escalation.engine.config import get_engine_config

        monkeypatch.setenv("ESCALATION_CRITICAL_ALERT_MINUTES", "45")
        get_engine_config.cache_clear()

        assert PhaseThresholds.from_config().critical_alert == 45


class TestCalculatePhase:
    """Tests for calculate_phase."""

    @pytest.mark.parametrize(
        "status",
        [s for s in SessionStatus if s != SessionStatus.ACTIVE],
    )
    def test_inactive_sessions_never_escalate(self, make_session, status):
        """Non-active sessions return None regardless of time."""
        session = make_session(status=status)
        far_future = session.next_check_in_due + timedelta(days=30)
        assert calculate_phase(session, far_future) is None

    def test_not_yet_due(self, sample_session):
        """Before the due instant there is no phase."""
        just_before = sample_session.next_check_in_due - timedelta(milliseconds=1)
        assert calculate_phase(sample_session, just_before) is None

    def test_exactly_due_is_soft_warning(self, sample_session):
        """At the due instant the soft warning applies."""
        assert calculate_phase(sample_session, sample_session.next_check_in_due) == (
            EscalationPhase.SOFT_WARNING
        )

    @pytest.mark.parametrize(
        ("overdue", "expected"),
        [
            (timedelta(minutes=14, seconds=59), EscalationPhase.SOFT_WARNING),
            (timedelta(minutes=15), EscalationPhase.MEDIUM_ALERT),
            (timedelta(minutes=59), EscalationPhase.MEDIUM_ALERT),
            (
                timedelta(minutes=59, seconds=59, milliseconds=999),
                EscalationPhase.MEDIUM_ALERT,
            ),
            (timedelta(minutes=60), EscalationPhase.CRITICAL_ALERT),
            (timedelta(minutes=1439, seconds=59), EscalationPhase.CRITICAL_ALERT),
            (timedelta(minutes=1440), EscalationPhase.LEGAL_ALERT),
            (timedelta(days=10), EscalationPhase.LEGAL_ALERT),
        ],
    )
    def test_threshold_boundaries(self, sample_session, overdue, expected):
        """The most severe phase whose threshold is reached wins."""
        now = sample_session.next_check_in_due + overdue
        assert calculate_phase(sample_session, now) == expected

    def test_deterministic(self, sample_session, frozen_now):
        """Same inputs give the same phase."""
        results = {calculate_phase(sample_session, frozen_now) for _ in range(5)}
        assert len(results) == 1

    def test_explicit_thresholds(self, sample_session):
        """Explicit thresholds override configuration."""
        thresholds = PhaseThresholds(medium_alert=5, critical_alert=10, legal_alert=20)
        now = sample_session.next_check_in_due + timedelta(minutes=10)
        assert calculate_phase(sample_session, now, thresholds) == EscalationPhase.CRITICAL_ALERT

    def test_session_overrides(self, make_session):
        """Per-session threshold tuning is applied over configuration."""
        session = make_session(escalation_thresholds={"critical_alert": 30})
        now = session.next_check_in_due + timedelta(minutes=30)
        assert calculate_phase(session, now) == EscalationPhase.CRITICAL_ALERT

    def test_resolve_thresholds_prefers_explicit(self, make_session):
        """Explicit thresholds ignore the session's own tuning."""
        session = make_session(escalation_thresholds={"critical_alert": 30})
        explicit = PhaseThresholds()
        assert resolve_thresholds(session, explicit) is explicit

    def test_needs_escalation(self, sample_session):
        """needs_escalation mirrors calculate_phase."""
        due = sample_session.next_check_in_due
        assert needs_escalation(sample_session, due - timedelta(seconds=1)) is False
        assert needs_escalation(sample_session, due) is True


class TestMinutesOverdue:
    """Tests for minutes_overdue."""

    def test_floor(self, sample_session):
        """Partial minutes are floored."""
        now = sample_session.next_check_in_due + timedelta(minutes=59, seconds=59, milliseconds=999)
        assert minutes_overdue(sample_session, now) == 59

    def test_not_overdue(self, sample_session):
        """Zero before the due instant."""
        now = sample_session.next_check_in_due - timedelta(hours=1)
        assert minutes_overdue(sample_session, now) == 0


class TestNextPhase:
    """Tests for next_phase."""

    def test_progression(self):
        """Phases progress in severity order."""
        assert next_phase(None) == EscalationPhase.SOFT_WARNING
        assert next_phase(EscalationPhase.SOFT_WARNING) == EscalationPhase.MEDIUM_ALERT
        assert next_phase(EscalationPhase.MEDIUM_ALERT) == EscalationPhase.CRITICAL_ALERT
        assert next_phase(EscalationPhase.CRITICAL_ALERT) == EscalationPhase.LEGAL_ALERT

    def test_terminal(self):
        """Nothing follows the legal alert or an emergency."""
        assert next_phase(EscalationPhase.LEGAL_ALERT) is None
        assert next_phase(EscalationPhase.EMERGENCY) is None

    def test_emergency_is_not_a_threshold_phase(self):
        """The emergency phase is never derived from time."""
        assert EscalationPhase.EMERGENCY.is_threshold_phase is False
        assert EscalationPhase.LEGAL_ALERT.is_threshold_phase is True


class TestTimeUntilNextPhase:
    """Tests for time_until_next_phase."""

    def test_while_overdue(self, sample_session):
        """Minutes remaining to the next threshold."""
        now = sample_session.next_check_in_due + timedelta(minutes=20)
        assert time_until_next_phase(sample_session, now) == 40

    def test_before_due(self, sample_session):
        """Before the due instant, the wait is rounded up to whole minutes."""
        now = sample_session.next_check_in_due - timedelta(minutes=9, seconds=30)
        assert time_until_next_phase(sample_session, now) == 10

    def test_at_most_severe_phase(self, sample_session):
        """None once the legal alert is reached."""
        now = sample_session.next_check_in_due + timedelta(days=2)
        assert time_until_next_phase(sample_session, now) is None

    def test_inactive(self, make_session):
        """None for inactive sessions."""
        session = make_session(status=SessionStatus.COMPLETED)
        assert time_until_next_phase(session, session.next_check_in_due) is None


class TestEscalationStatus:
    """Tests for get_escalation_status."""

    def test_status_view(self, sample_session):
        """The status view reports current and next phase."""
        now = sample_session.next_check_in_due + timedelta(minutes=20)
        status = get_escalation_status(sample_session, now)

        assert status["session_id"] == sample_session.session_id
        assert status["status"] == "active"
        assert status["current_phase"] == "medium_alert"
        assert status["next_phase"] == "critical_alert"
        assert status["minutes_overdue"] == 20
        assert status["time_until_next_phase"] == 40
        assert status["needs_action"] is True

    def test_status_view_inactive(self, make_session):
        """Inactive sessions need no action and have no next phase."""
        session = make_session(status=SessionStatus.CANCELLED)
        status = get_escalation_status(session, session.next_check_in_due + timedelta(hours=3))

        assert status["current_phase"] is None
        assert status["next_phase"] is None
        assert status["needs_action"] is False
