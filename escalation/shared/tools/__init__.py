# Shared Tools
"""
Record-store and email tools used by the escalation engine.
"""

from escalation.shared.tools.dynamodb import (
    create_session,
    end_session,
    get_active_sessions,
    list_in_app_notifications,
    load_session,
    mark_session_escalated,
    record_check_in,
    save_in_app_notification,
)
from escalation.shared.tools.escalations import (
    append_emergency_record,
    claim_escalation,
    complete_escalation,
    has_escalation_record,
    list_session_escalations,
    load_escalation_record,
    release_escalation,
)
from escalation.shared.tools.email import send_ses_email, validate_email_address
from escalation.shared.tools.profiles import load_user_profile, save_user_profile

__all__ = [
    # Session tools
    "create_session",
    "end_session",
    "get_active_sessions",
    "list_in_app_notifications",
    "load_session",
    "mark_session_escalated",
    "record_check_in",
    "save_in_app_notification",
    # Escalation record tools
    "append_emergency_record",
    "claim_escalation",
    "complete_escalation",
    "has_escalation_record",
    "list_session_escalations",
    "load_escalation_record",
    "release_escalation",
    # Email tools
    "send_ses_email",
    "validate_email_address",
    # Profile tools
    "load_user_profile",
    "save_user_profile",
]
