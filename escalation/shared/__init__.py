# Shared Infrastructure for the Escalation Service
"""
Shared infrastructure components for the check-in escalation service.

This package provides:
- Session state machine (SessionStatus, valid transitions)
- Pydantic models for DynamoDB items and user profiles
- Tool implementations for DynamoDB and SES
- Configuration management
- Custom exceptions
"""

from escalation.shared.state_machine import SessionStatus, VALID_TRANSITIONS, validate_transition
from escalation.shared.exceptions import (
    ConfigurationError,
    DedupStoreError,
    InvalidStateTransitionError,
    NotificationTemplateError,
    ProfileNotFoundError,
    RecipientDeliveryError,
    SafetyError,
    SessionNotFoundError,
)
from escalation.shared.config import Settings, get_settings

__all__ = [
    # State machine
    "SessionStatus",
    "VALID_TRANSITIONS",
    "validate_transition",
    # Exceptions
    "ConfigurationError",
    "DedupStoreError",
    "InvalidStateTransitionError",
    "NotificationTemplateError",
    "ProfileNotFoundError",
    "RecipientDeliveryError",
    "SafetyError",
    "SessionNotFoundError",
    # Config
    "Settings",
    "get_settings",
]
