# Shared Models
"""
Pydantic models for DynamoDB items: sessions, check-ins, escalation
records, in-app notifications and user profiles.
"""

from escalation.shared.models.dynamo import (
    LOCATION_UNAVAILABLE,
    CheckInMethod,
    CheckInRecord,
    EscalationRecord,
    EscalationState,
    InAppNotification,
    LocationSnapshot,
    ProtectionSession,
    SessionKey,
    SessionStats,
    format_address,
    from_epoch_ms,
    to_epoch_ms,
)
from escalation.shared.models.profile import Contact, UserProfile

__all__ = [
    # Sessions
    "LOCATION_UNAVAILABLE",
    "CheckInMethod",
    "CheckInRecord",
    "LocationSnapshot",
    "ProtectionSession",
    "SessionKey",
    "SessionStats",
    "format_address",
    # Escalation audit
    "EscalationRecord",
    "EscalationState",
    "InAppNotification",
    # Profiles
    "Contact",
    "UserProfile",
    # Helpers
    "from_epoch_ms",
    "to_epoch_ms",
]
