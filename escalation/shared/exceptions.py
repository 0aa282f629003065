"""
Custom Exceptions for the Check-In Escalation Service

All exceptions follow the pattern of specific, actionable errors
with context needed for debugging and logging.
"""

from dataclasses import dataclass
from typing import Any


class SafetyError(Exception):
    """Base exception for the check-in escalation service."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


@dataclass
class ConfigurationError(SafetyError):
    """Required outbound notification configuration is missing."""

    setting: str

    def __init__(self, setting: str, detail: str | None = None) -> None:
        self.setting = setting
        super().__init__(
            f"Notification service not configured: '{setting}' is not set"
            + (f". {detail}" if detail else ""),
            setting=setting,
        )


@dataclass
class ProfileNotFoundError(SafetyError):
    """Owner profile not found when recipients are needed."""

    user_id: str

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(
            f"User profile '{user_id}' not found",
            user_id=user_id,
        )


@dataclass
class SessionNotFoundError(SafetyError):
    """Protection session record not found in DynamoDB."""

    session_id: str

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(
            f"Session '{session_id}' not found",
            session_id=session_id,
        )


@dataclass
class SessionNotActiveError(SafetyError):
    """Operation requires an active session."""

    session_id: str
    status: str

    def __init__(self, session_id: str, status: str) -> None:
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Session '{session_id}' is not active (status '{status}')",
            session_id=session_id,
            status=status,
        )


@dataclass
class InvalidStateTransitionError(SafetyError):
    """Attempted invalid session status transition."""

    current_status: str
    new_status: str
    allowed_transitions: list[str]

    def __init__(
        self,
        current_status: str,
        new_status: str,
        allowed_transitions: list[str],
    ) -> None:
        self.current_status = current_status
        self.new_status = new_status
        self.allowed_transitions = allowed_transitions
        super().__init__(
            f"Cannot transition from '{current_status}' to '{new_status}'. "
            f"Allowed transitions: {allowed_transitions}",
            current_status=current_status,
            new_status=new_status,
            allowed_transitions=allowed_transitions,
        )


@dataclass
class DynamoDBError(SafetyError):
    """DynamoDB operation failed."""

    operation: str  # "get", "put", "update", "query", "delete"
    table_name: str

    def __init__(
        self,
        operation: str,
        table_name: str,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.table_name = table_name
        super().__init__(
            f"DynamoDB {operation} failed on table '{table_name}': {error_message or 'Unknown error'}",
            operation=operation,
            table_name=table_name,
            error_message=error_message,
        )


@dataclass
class ConditionalWriteError(DynamoDBError):
    """DynamoDB conditional write failed (optimistic lock conflict)."""

    expected_version: int | None = None
    actual_version: int | None = None

    def __init__(
        self,
        table_name: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            operation="conditional_write",
            table_name=table_name,
            error_message=f"Version mismatch: expected {expected_version}, got {actual_version}",
        )


@dataclass
class DedupStoreError(SafetyError):
    """Escalation record store could not be read or written."""

    operation: str  # "check", "claim", "record", "release"
    session_id: str
    phase: str

    def __init__(
        self,
        operation: str,
        session_id: str,
        phase: str,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.session_id = session_id
        self.phase = phase
        super().__init__(
            f"Escalation record {operation} failed for session '{session_id}' "
            f"phase '{phase}': {error_message or 'Unknown error'}",
            operation=operation,
            session_id=session_id,
            phase=phase,
            error_message=error_message,
        )


@dataclass
class SESError(SafetyError):
    """SES email operation failed."""

    operation: str  # "send", "verify"
    recipient: str | None = None

    def __init__(
        self,
        operation: str,
        recipient: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.operation = operation
        self.recipient = recipient
        super().__init__(
            f"SES {operation} failed{f' for {recipient}' if recipient else ''}: "
            f"{error_message or 'Unknown error'}",
            operation=operation,
            recipient=recipient,
            error_message=error_message,
        )


@dataclass
class RecipientDeliveryError(SESError):
    """A single recipient's notification could not be delivered."""

    notification_type: str | None = None

    def __init__(
        self,
        recipient: str | None,
        notification_type: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.notification_type = notification_type
        super().__init__(
            operation="deliver",
            recipient=recipient,
            error_message=error_message,
        )
        if notification_type:
            self.context["notification_type"] = notification_type


@dataclass
class NotificationTemplateError(SafetyError):
    """Notification template could not be rendered."""

    notification_type: str

    def __init__(self, notification_type: str, error_message: str | None = None) -> None:
        self.notification_type = notification_type
        super().__init__(
            f"Template render failed for '{notification_type}': {error_message or 'Unknown error'}",
            notification_type=notification_type,
            error_message=error_message,
        )


@dataclass
class InvalidEmailFormatError(SafetyError):
    """Email address format is invalid."""

    email_address: str
    expected_pattern: str | None = None

    def __init__(
        self,
        email_address: str,
        expected_pattern: str | None = None,
    ) -> None:
        self.email_address = email_address
        self.expected_pattern = expected_pattern
        pattern_hint = f" Expected pattern: {expected_pattern}" if expected_pattern else ""
        super().__init__(
            f"Invalid email format: '{email_address}'.{pattern_hint}",
            email_address=email_address,
            expected_pattern=expected_pattern,
        )
