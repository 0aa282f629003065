"""
Manual Trigger

On-demand entry points:
- trigger_for_session: one scan iteration for one session (idempotent,
  same dedup semantics as the periodic scan)
- trigger_emergency: unconditional emergency broadcast; never
  deduplicated, every press notifies everyone again
"""

from datetime import datetime, timezone
from typing import Any

import structlog

from escalation.engine.executor import EscalationExecutor, ExecutionResult
from escalation.engine.phases import get_escalation_status
from escalation.engine.scanner import SessionOutcome, SessionScanner
from escalation.shared.exceptions import DynamoDBError, SessionNotFoundError
from escalation.shared.models.dynamo import LocationSnapshot, ProtectionSession
from escalation.shared.tools.dynamodb import load_session
from escalation.shared.tools.escalations import append_emergency_record

log = structlog.get_logger()


def trigger_for_session(
    session_id: str,
    now: datetime | None = None,
    *,
    scanner: SessionScanner | None = None,
) -> SessionOutcome:
    """
    Check one session and escalate it if a phase is due.

    Raises:
        SessionNotFoundError: If the session doesn't exist
    """
    now = now or datetime.now(timezone.utc)
    session = load_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)

    log.info("manual_escalation_check", session_id=session_id, status=session.status.value)

    scanner = scanner or SessionScanner()
    return scanner.process_session(session, now)


def trigger_emergency(
    user_id: str,
    session_id: str | None = None,
    location: dict[str, Any] | LocationSnapshot | None = None,
    *,
    now: datetime | None = None,
    executor: EscalationExecutor | None = None,
) -> ExecutionResult:
    """
    Broadcast an emergency for a user, optionally ending their session.

    A session that cannot be found (or belongs to someone else) does not
    stop the broadcast; it is simply not terminated.

    Raises:
        ConfigurationError: No sender configured
        ProfileNotFoundError: Owner profile missing
        NotificationTemplateError: A notification failed to render
    """
    now = now or datetime.now(timezone.utc)
    if isinstance(location, dict):
        location = LocationSnapshot.from_raw(location, captured_at=now)

    session = _session_for_emergency(user_id, session_id)
    executor = executor or EscalationExecutor()

    result = executor.execute_emergency(user_id, session, location=location, now=now)

    if session_id and session is None:
        result.session_id = session_id
        result.session_terminated = False

    if session_id:
        try:
            append_emergency_record(session_id, user_id, result.to_dict(), now=now)
        except DynamoDBError as e:
            log.error("emergency_audit_failed", session_id=session_id, error=str(e))

    return result


def _session_for_emergency(user_id: str, session_id: str | None) -> ProtectionSession | None:
    if not session_id:
        return None

    try:
        session = load_session(session_id)
    except DynamoDBError as e:
        log.warning("emergency_session_load_failed", session_id=session_id, error=str(e))
        return None

    if session is None:
        log.warning("emergency_session_not_found", session_id=session_id)
        return None
    if session.user_id != user_id:
        log.warning(
            "emergency_session_owner_mismatch",
            session_id=session_id,
            user_id=user_id,
        )
        return None
    return session


def session_status(session_id: str, now: datetime | None = None) -> dict[str, Any]:
    """
    Escalation status view for one session.

    Raises:
        SessionNotFoundError: If the session doesn't exist
    """
    session = load_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return get_escalation_status(session, now or datetime.now(timezone.utc))
