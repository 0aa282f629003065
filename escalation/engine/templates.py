"""
Notification Templates

Subject and plain-text body templates for every escalation notification,
rendered with Jinja2 under StrictUndefined: a missing variable is a
render failure.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from jinja2 import Environment, StrictUndefined, TemplateError

from escalation.shared.config import get_settings
from escalation.shared.exceptions import NotificationTemplateError
from escalation.shared.models.dynamo import LOCATION_UNAVAILABLE, LocationSnapshot, ProtectionSession
from escalation.shared.models.profile import Contact, UserProfile

log = structlog.get_logger()


class NotificationType(str, Enum):
    """One template per phase and recipient category."""

    SOFT_WARNING_IN_APP = "soft_warning_in_app"
    MEDIUM_ALERT_OWNER = "medium_alert_owner"
    CRITICAL_ALERT_CONTACT = "critical_alert_contact"
    LEGAL_ALERT_CONTACT = "legal_alert_contact"
    EMERGENCY_OWNER = "emergency_owner"
    EMERGENCY_CONTACT = "emergency_contact"
    EMERGENCY_LEGAL = "emergency_legal"


@dataclass(frozen=True)
class RenderedNotification:
    """Rendered subject and body ready to send."""

    notification_type: NotificationType
    subject: str
    body_text: str


SUBJECT_TEMPLATES: dict[NotificationType, str] = {
    NotificationType.SOFT_WARNING_IN_APP: "Safety Check Required",
    NotificationType.MEDIUM_ALERT_OWNER: "Urgent: Safety Check Overdue",
    NotificationType.CRITICAL_ALERT_CONTACT: "URGENT: {{ user_name }} hasn't checked in",
    NotificationType.LEGAL_ALERT_CONTACT: "URGENT: 24-Hour Safety Escalation - {{ user_name }}",
    NotificationType.EMERGENCY_OWNER: "EMERGENCY ALERT - Your contacts are being notified",
    NotificationType.EMERGENCY_CONTACT: "EMERGENCY: {{ user_name }} needs immediate help",
    NotificationType.EMERGENCY_LEGAL: "LEGAL ALERT: {{ user_name }} - Emergency Case File",
}

BODY_TEMPLATES: dict[NotificationType, str] = {
    NotificationType.SOFT_WARNING_IN_APP: (
        "Your protection session needs a check-in. "
        "You are {{ overdue }} past your check-in time. "
        "Check in within {{ minutes_to_next }} minutes to prevent escalation."
    ),
    NotificationType.MEDIUM_ALERT_OWNER: """\
Hi {{ user_name }},

You have not checked in for {{ overdue }}.

Your safety session has exceeded the check-in window.

Session Information:
- Protection Level: {{ protection_level }}
- Last Known Location: {{ location }}
- Started: {{ started_at }}
- Time Overdue: {{ overdue }}

Next Step: If no check-in within 60 minutes, your trusted contacts will be notified
with your last known location.

Check in now: {{ app_url }}/home

Emergency? Call {{ emergency_number }} immediately.
""",
    NotificationType.CRITICAL_ALERT_CONTACT: """\
Hi {{ recipient_name }},

{{ user_name }} listed you as a trusted contact and has missed a safety check-in.
Their check-in is now {{ overdue }} overdue.

Last Known Information:
- Location: {{ location }}
{%- if maps_url %}
- Map: {{ maps_url }}
{%- endif %}
- Session Type: {{ protection_level }}
- Destination: {{ destination }}
- Session Started: {{ started_at }}

What to do:
1. Try contacting {{ user_name }} directly.
2. If you cannot reach them within 30 minutes, consider contacting local authorities.
3. If you believe they are in immediate danger, call {{ emergency_number }}.
""",
    NotificationType.LEGAL_ALERT_CONTACT: """\
Hi {{ recipient_name }}{% if organization %} ({{ organization }}){% endif %},

No check-in activity for 24+ hours. This case requires legal attention.

{{ user_name }} started a protection session and has not checked in for {{ overdue }}.
Their consent and supporting documents are available to your organization on request.

Case Information:
- Session ID: {{ session_id }}
- Session Type: {{ protection_level }}
- Destination: {{ destination }}
- Last Known Location: {{ location }}
{%- if maps_url %}
- Map: {{ maps_url }}
{%- endif %}
- Session Started: {{ started_at }}
- Time Overdue: {{ overdue }}

Please review the case and take action according to your organization's procedures.
""",
    NotificationType.EMERGENCY_OWNER: """\
Hi {{ user_name }},

Your emergency alert was triggered at {{ triggered_at }}.
Your emergency contacts and legal organizations are being notified now
with your last known location: {{ location }}.

If you are in immediate danger, call {{ emergency_number }} now.
""",
    NotificationType.EMERGENCY_CONTACT: """\
Hi {{ recipient_name }},

EMERGENCY BUTTON TRIGGERED
{{ user_name }} has activated emergency escalation.

IMMEDIATE ACTIONS REQUIRED:
1. Try contacting {{ user_name }} immediately.
2. Check their last known location (below).
3. If there is no response within 30 minutes, consider contacting local authorities.

Last Known Information:
- Location: {{ location }}
{%- if maps_url %}
- Map: {{ maps_url }}
{%- endif %}
- Time: {{ triggered_at }}
- Session Type: {{ protection_level }}
- Destination: {{ destination }}

This is a real emergency alert. All emergency contacts and legal organizations
have been notified.

Emergency Services: {{ emergency_number }}
""",
    NotificationType.EMERGENCY_LEGAL: """\
Hi {{ recipient_name }}{% if organization %} ({{ organization }}){% endif %},

{{ user_name }} has triggered an emergency alert and requested legal assistance.

Case File:
- Session ID: {{ session_id }}
- Triggered: {{ triggered_at }}
- Last Known Location: {{ location }}
{%- if maps_url %}
- Map: {{ maps_url }}
{%- endif %}
- Session Type: {{ protection_level }}
- Destination: {{ destination }}
{%- if notes %}
- Notes: {{ notes }}
{%- endif %}

Consent and supporting documents are available to your organization on request.
""",
}

_environment = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)


def format_overdue(session: ProtectionSession | None, now: datetime) -> str:
    """Format time past due as 'Xh Ym', or 'N minutes' under an hour."""
    if session is None:
        return "Unknown"
    overdue = max(0.0, (now - session.next_check_in_due).total_seconds())
    minutes = int(overdue // 60)
    hours, remaining = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {remaining}m"
    return f"{minutes} minutes"


def _format_instant(value: datetime | None) -> str:
    if value is None:
        return "Unknown"
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def build_template_context(
    session: ProtectionSession | None,
    profile: UserProfile,
    *,
    now: datetime,
    recipient: Contact | None = None,
    location: LocationSnapshot | None = None,
    minutes_to_next: int | None = None,
) -> dict[str, Any]:
    """
    Build the variables shared by every notification template.

    Args:
        session: Session being escalated (None for an emergency without one)
        profile: Owner profile
        now: Current instant
        recipient: Contact being notified (owner when None)
        location: Location overriding the session's last known one
        minutes_to_next: Minutes until the next phase, for reminders
    """
    settings = get_settings()
    location = location or (session.location if session else None)

    return {
        "user_name": profile.name,
        "recipient_name": recipient.name if recipient else profile.name,
        "organization": recipient.organization if recipient else None,
        "session_id": session.session_id if session else "Not specified",
        "protection_level": (session.protection_level if session else None) or "Unknown",
        "destination": (session.destination if session else None) or "Not specified",
        "notes": session.notes if session else "",
        "location": location.display() if location else LOCATION_UNAVAILABLE,
        "maps_url": location.maps_url() if location else None,
        "started_at": _format_instant(session.started_at if session else None),
        "overdue": format_overdue(session, now),
        "minutes_to_next": minutes_to_next if minutes_to_next is not None else 15,
        "triggered_at": _format_instant(now),
        "app_url": settings.app_url.rstrip("/"),
        "emergency_number": settings.emergency_services_number,
    }


def render_notification(
    notification_type: NotificationType | str,
    context: dict[str, Any],
) -> RenderedNotification:
    """
    Render subject and body for a notification type.

    Raises:
        NotificationTemplateError: If the type is unknown or rendering fails
    """
    try:
        notification_type = NotificationType(notification_type)
    except ValueError as e:
        raise NotificationTemplateError(str(notification_type), "Unknown notification type") from e

    try:
        subject = _environment.from_string(SUBJECT_TEMPLATES[notification_type]).render(**context)
        body = _environment.from_string(BODY_TEMPLATES[notification_type]).render(**context)
    except TemplateError as e:
        log.error(
            "template_render_failed",
            notification_type=notification_type.value,
            error=str(e),
            available_vars=sorted(context.keys()),
        )
        raise NotificationTemplateError(notification_type.value, str(e)) from e

    return RenderedNotification(
        notification_type=notification_type,
        subject=subject.strip(),
        body_text=body,
    )
