"""
Escalation Phase Calculator

Pure functions deriving a session's escalation phase from its due
instant and the current time. No I/O: the same (session, now,
thresholds) always yields the same phase, which is what lets the
scanner run repeatedly without drift.

Phase table (minutes overdue, most severe wins):
    legal_alert     >= 1440
    critical_alert  >= 60
    medium_alert    >= 15
    soft_warning    >= 0
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

from escalation.engine.config import get_engine_config
from escalation.shared.models.dynamo import ProtectionSession
from escalation.shared.state_machine import SessionStatus


class EscalationPhase(str, Enum):
    """Escalation severity tiers."""

    SOFT_WARNING = "soft_warning"
    """In-app reminder to the owner."""

    MEDIUM_ALERT = "medium_alert"
    """Email to the owner."""

    CRITICAL_ALERT = "critical_alert"
    """Emails to personal emergency contacts."""

    LEGAL_ALERT = "legal_alert"
    """Emails to legal/organizational contacts."""

    EMERGENCY = "emergency"
    """Manual broadcast to everyone; never derived from time."""

    @property
    def is_threshold_phase(self) -> bool:
        return self in THRESHOLD_PHASES


# Threshold phases in ascending severity
THRESHOLD_PHASES: tuple[EscalationPhase, ...] = (
    EscalationPhase.SOFT_WARNING,
    EscalationPhase.MEDIUM_ALERT,
    EscalationPhase.CRITICAL_ALERT,
    EscalationPhase.LEGAL_ALERT,
)


@dataclass(frozen=True)
class PhaseThresholds:
    """
    Minutes-overdue threshold per phase.

    Thresholds must not decrease with severity.
    """

    soft_warning: int = 0
    medium_alert: int = 15
    critical_alert: int = 60
    legal_alert: int = 1440

    def __post_init__(self) -> None:
        values = [self.minutes_for(phase) for phase in THRESHOLD_PHASES]
        if any(v < 0 for v in values):
            raise ValueError(f"Phase thresholds must be non-negative: {values}")
        if values != sorted(values):
            raise ValueError(f"Phase thresholds must be ascending by severity: {values}")

    def minutes_for(self, phase: EscalationPhase) -> int:
        return getattr(self, phase.value)

    def descending(self) -> list[tuple[EscalationPhase, int]]:
        """(phase, threshold) pairs, most severe first."""
        return [(phase, self.minutes_for(phase)) for phase in reversed(THRESHOLD_PHASES)]

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> "PhaseThresholds":
        """Return thresholds with known phase keys replaced."""
        if not overrides:
            return self
        values = {phase.value: self.minutes_for(phase) for phase in THRESHOLD_PHASES}
        for key, minutes in overrides.items():
            if key in values:
                values[key] = int(minutes)
        return PhaseThresholds(**values)

    @classmethod
    def from_config(cls) -> "PhaseThresholds":
        return cls(**get_engine_config().thresholds)


def resolve_thresholds(
    session: ProtectionSession,
    thresholds: PhaseThresholds | None = None,
) -> PhaseThresholds:
    """Explicit thresholds win; otherwise configured ones with the session's tuning applied."""
    if thresholds is not None:
        return thresholds
    return PhaseThresholds.from_config().with_overrides(session.escalation_thresholds)


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def minutes_overdue(session: ProtectionSession, now: datetime) -> int:
    """Whole minutes past the due instant (floor), 0 when not overdue."""
    elapsed = _as_utc(now) - session.next_check_in_due
    if elapsed < timedelta(0):
        return 0
    return elapsed // timedelta(minutes=1)


def calculate_phase(
    session: ProtectionSession,
    now: datetime,
    thresholds: PhaseThresholds | None = None,
) -> EscalationPhase | None:
    """
    Derive the current escalation phase of a session.

    Args:
        session: Session to evaluate
        now: Current instant
        thresholds: Override the configured/per-session thresholds

    Returns:
        The most severe phase whose threshold is reached, or None when
        the session is not active or not yet due
    """
    if session.status != SessionStatus.ACTIVE:
        return None
    if _as_utc(now) < session.next_check_in_due:
        return None

    overdue = minutes_overdue(session, now)
    for phase, threshold in resolve_thresholds(session, thresholds).descending():
        if overdue >= threshold:
            return phase
    return None


def next_phase(phase: EscalationPhase | None) -> EscalationPhase | None:
    """The threshold phase after `phase` (soft_warning when not yet escalating)."""
    if phase is None:
        return THRESHOLD_PHASES[0]
    if phase not in THRESHOLD_PHASES:
        return None
    index = THRESHOLD_PHASES.index(phase)
    if index + 1 < len(THRESHOLD_PHASES):
        return THRESHOLD_PHASES[index + 1]
    return None


def time_until_next_phase(
    session: ProtectionSession,
    now: datetime,
    thresholds: PhaseThresholds | None = None,
) -> int | None:
    """
    Minutes until the session reaches its next phase.

    Before the due instant this is the (rounded up) wait until the
    first phase. None when the session is not active or already at the
    most severe phase.
    """
    if session.status != SessionStatus.ACTIVE:
        return None

    resolved = resolve_thresholds(session, thresholds)
    current = calculate_phase(session, now, resolved)
    upcoming = next_phase(current)
    if upcoming is None:
        return None

    if current is None:
        remaining = session.next_check_in_due - _as_utc(now)
        wait = -(-remaining // timedelta(minutes=1))
        return wait + resolved.minutes_for(upcoming)

    return resolved.minutes_for(upcoming) - minutes_overdue(session, now)


def needs_escalation(
    session: ProtectionSession,
    now: datetime,
    thresholds: PhaseThresholds | None = None,
) -> bool:
    return calculate_phase(session, now, thresholds) is not None


def get_escalation_status(
    session: ProtectionSession,
    now: datetime,
    thresholds: PhaseThresholds | None = None,
) -> dict[str, Any]:
    """Status view: current phase, next phase, minutes until next, whether action is needed."""
    resolved = resolve_thresholds(session, thresholds)
    phase = calculate_phase(session, now, resolved)
    upcoming = next_phase(phase) if session.status == SessionStatus.ACTIVE else None

    return {
        "session_id": session.session_id,
        "status": session.status.value,
        "current_phase": phase.value if phase else None,
        "next_phase": upcoming.value if upcoming else None,
        "minutes_overdue": minutes_overdue(session, now),
        "time_until_next_phase": time_until_next_phase(session, now, resolved),
        "needs_action": phase is not None,
        "next_check_in_due": session.next_check_in_due.isoformat(),
        "last_escalated_phase": session.last_escalated_phase,
    }
