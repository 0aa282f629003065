"""
Protection Session State Machine

Defines allowed session states and valid status transitions.
Only ACTIVE sessions are eligible for escalation phase computation.
"""

from enum import Enum
from typing import Final

import structlog

from escalation.shared.exceptions import InvalidStateTransitionError

log = structlog.get_logger()


class SessionStatus(str, Enum):
    """
    Protection session status enum.

    States are mutually exclusive and represent the lifecycle stage
    of a single timed protection session.
    """

    ACTIVE = "active"
    """Session running, check-ins expected on the configured cadence."""

    COMPLETED = "completed"
    """Owner ended the session safely."""

    CANCELLED = "cancelled"
    """Owner cancelled the session."""

    EMERGENCY = "emergency"
    """Emergency broadcast triggered; session force-terminated."""

    ESCALATED = "escalated"
    """Most severe escalation phase executed; no further phases remain."""

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no outgoing transitions)."""
        return self in TERMINAL_STATES

    @classmethod
    def from_string(cls, value: str) -> "SessionStatus":
        """Convert string to SessionStatus enum."""
        try:
            return cls(value.lower())
        except ValueError as e:
            raise ValueError(
                f"Invalid session status: '{value}'. "
                f"Valid values are: {[s.value for s in cls]}"
            ) from e


# Terminal states have no outgoing transitions
TERMINAL_STATES: Final[frozenset[SessionStatus]] = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.CANCELLED,
    SessionStatus.EMERGENCY,
})

# Key: current status, Value: set of allowed next statuses
VALID_TRANSITIONS: Final[dict[SessionStatus, frozenset[SessionStatus]]] = {
    SessionStatus.ACTIVE: frozenset({
        SessionStatus.COMPLETED,
        SessionStatus.CANCELLED,
        SessionStatus.EMERGENCY,
        SessionStatus.ESCALATED,
    }),
    SessionStatus.ESCALATED: frozenset({
        SessionStatus.COMPLETED,
        SessionStatus.CANCELLED,
        SessionStatus.EMERGENCY,
    }),
    SessionStatus.COMPLETED: frozenset(),  # Terminal
    SessionStatus.CANCELLED: frozenset(),  # Terminal
    SessionStatus.EMERGENCY: frozenset(),  # Terminal
}

# Reasons an owner (or the emergency path) may end a session with
END_REASONS: Final[frozenset[SessionStatus]] = frozenset({
    SessionStatus.COMPLETED,
    SessionStatus.CANCELLED,
    SessionStatus.EMERGENCY,
})


def validate_transition(
    current_status: SessionStatus | str,
    new_status: SessionStatus | str,
    *,
    raise_on_invalid: bool = True,
) -> bool:
    """
    Validate that a status transition is allowed.

    Args:
        current_status: Current session status
        new_status: Desired next status
        raise_on_invalid: If True, raise exception on invalid transition

    Returns:
        True if transition is valid

    Raises:
        InvalidStateTransitionError: If transition is invalid and raise_on_invalid=True
    """
    if isinstance(current_status, str):
        current_status = SessionStatus.from_string(current_status)
    if isinstance(new_status, str):
        new_status = SessionStatus.from_string(new_status)

    allowed = VALID_TRANSITIONS.get(current_status, frozenset())
    is_valid = new_status in allowed

    if not is_valid and raise_on_invalid:
        log.warning(
            "invalid_state_transition",
            current_status=current_status.value,
            new_status=new_status.value,
            allowed_transitions=sorted(s.value for s in allowed),
        )
        raise InvalidStateTransitionError(
            current_status=current_status.value,
            new_status=new_status.value,
            allowed_transitions=sorted(s.value for s in allowed),
        )

    return is_valid
