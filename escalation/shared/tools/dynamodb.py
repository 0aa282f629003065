"""
DynamoDB Tools

Session record persistence for protection sessions.
Every write that races with the owner's own actions is conditional.
"""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import boto3
from botocore.exceptions import ClientError
import structlog

from escalation.shared.config import get_settings
from escalation.shared.exceptions import (
    ConditionalWriteError,
    DynamoDBError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from escalation.shared.models.dynamo import (
    CheckInMethod,
    CheckInRecord,
    InAppNotification,
    LocationSnapshot,
    ProtectionSession,
    SessionKey,
    SessionStats,
    to_epoch_ms,
)
from escalation.shared.state_machine import (
    END_REASONS,
    SessionStatus,
    validate_transition,
)

log = structlog.get_logger()


def _get_table():
    """Get DynamoDB table resource."""
    settings = get_settings()
    dynamodb = boto3.resource("dynamodb", **settings.dynamodb_config)
    return dynamodb.Table(settings.dynamodb_table_name)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response["Error"]["Code"] == "ConditionalCheckFailedException"


def load_session(
    session_id: str,
    *,
    consistent_read: bool = True,
) -> ProtectionSession | None:
    """
    Load a protection session from DynamoDB.

    Args:
        session_id: Session identifier
        consistent_read: Use strongly consistent read (default True)

    Returns:
        ProtectionSession if found, None otherwise

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    settings = get_settings()
    table = _get_table()

    log.debug("loading_session", session_id=session_id)

    try:
        response = table.get_item(
            Key=SessionKey(session_id).to_key(),
            ConsistentRead=consistent_read,
        )
    except ClientError as e:
        log.error("dynamodb_get_failed", session_id=session_id, error=str(e))
        raise DynamoDBError(
            operation="get",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    item = response.get("Item")
    if not item:
        log.debug("session_not_found", session_id=session_id)
        return None

    return ProtectionSession.from_dynamodb(item)


def create_session(
    user_id: str,
    check_in_interval_minutes: int,
    *,
    session_id: str | None = None,
    duration_minutes: int | None = None,
    protection_level: str = "custom",
    destination: str = "",
    notes: str = "",
    location: dict[str, Any] | LocationSnapshot | None = None,
    escalation_thresholds: dict[str, int] | None = None,
    now: datetime | None = None,
) -> ProtectionSession:
    """
    Start a new protection session.

    The first check-in is due one interval after the start. This is
    idempotent on session_id: an existing record is returned unchanged.

    Args:
        user_id: Owning user identifier
        check_in_interval_minutes: Check-in cadence
        session_id: Explicit identifier (generated when omitted)
        duration_minutes: Optional total session length (sets end_time)
        protection_level: Trip type
        destination: Free-text destination
        notes: Owner notes
        location: Starting location (raw payload or snapshot)
        escalation_thresholds: Owner's per-phase threshold tuning
        now: Override the start instant

    Returns:
        Created or existing ProtectionSession

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    settings = get_settings()
    table = _get_table()

    started_at = now or _utcnow()
    session_id = session_id or str(uuid4())

    if isinstance(location, dict):
        location = LocationSnapshot.from_raw(location, captured_at=started_at)

    session = ProtectionSession(
        session_id=session_id,
        user_id=user_id,
        status=SessionStatus.ACTIVE,
        started_at=started_at,
        check_in_interval_minutes=check_in_interval_minutes,
        next_check_in_due=started_at + timedelta(minutes=check_in_interval_minutes),
        end_time=(
            started_at + timedelta(minutes=duration_minutes) if duration_minutes else None
        ),
        stats=SessionStats(),
        protection_level=protection_level,
        destination=destination,
        notes=notes,
        location=location,
        escalation_thresholds=escalation_thresholds,
        created_at=started_at,
        updated_at=started_at,
        version=1,
    )

    log.info(
        "creating_session",
        session_id=session_id,
        user_id=user_id,
        interval_minutes=check_in_interval_minutes,
        protection_level=protection_level,
    )

    try:
        table.put_item(
            Item=session.to_dynamodb(),
            ConditionExpression="attribute_not_exists(PK)",
        )
        log.info("session_created", session_id=session_id)
        return session
    except ClientError as e:
        if _is_conditional_failure(e):
            log.info("session_already_exists", session_id=session_id)
            existing = load_session(session_id)
            if existing:
                return existing
            raise SessionNotFoundError(session_id) from e

        log.error("dynamodb_put_failed", session_id=session_id, error=str(e))
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e


def get_active_sessions() -> list[ProtectionSession]:
    """
    List every session whose status is active.

    Uses GSI1 (GSI1PK = SESSIONS#active) and follows pagination.
    No overdue filtering happens here.

    Raises:
        DynamoDBError: If the sessions cannot be queried at all
    """
    settings = get_settings()
    table = _get_table()

    query_params: dict[str, Any] = {
        "IndexName": settings.dynamodb_gsi1_name,
        "KeyConditionExpression": "GSI1PK = :gsi1pk",
        "ExpressionAttributeValues": {":gsi1pk": f"SESSIONS#{SessionStatus.ACTIVE.value}"},
    }

    try:
        response = table.query(**query_params)
        items = response.get("Items", [])

        while "LastEvaluatedKey" in response:
            query_params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
            response = table.query(**query_params)
            items.extend(response.get("Items", []))
    except ClientError as e:
        log.error("dynamodb_gsi_query_failed", gsi1pk="SESSIONS#active", error=str(e))
        raise DynamoDBError(
            operation="query",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    sessions = [ProtectionSession.from_dynamodb(item) for item in items]
    log.debug("active_sessions_loaded", count=len(sessions))
    return sessions


def record_check_in(
    session_id: str,
    *,
    location: dict[str, Any] | LocationSnapshot | None = None,
    method: CheckInMethod | str = CheckInMethod.MANUAL,
    notes: str = "",
    now: datetime | None = None,
) -> ProtectionSession:
    """
    Record an owner check-in and advance the due instant.

    The new due instant is computed from the previous due instant, never
    from the check-in time: it moves forward by whole intervals until it
    lies in the future. Intervals skipped that way count as missed.

    Raises:
        SessionNotFoundError: If the session doesn't exist
        SessionNotActiveError: If the session is no longer active
        ConditionalWriteError: If the session changed concurrently
        DynamoDBError: On other DynamoDB failures
    """
    settings = get_settings()
    table = _get_table()
    now = now or _utcnow()

    current = load_session(session_id)
    if not current:
        raise SessionNotFoundError(session_id)
    if current.status != SessionStatus.ACTIVE:
        raise SessionNotActiveError(session_id, current.status.value)

    if isinstance(location, dict):
        location = LocationSnapshot.from_raw(location, captured_at=now)

    interval = timedelta(minutes=current.check_in_interval_minutes)
    next_due = current.next_check_in_due + interval
    skipped = 0
    while next_due <= now:
        next_due += interval
        skipped += 1

    response_time = max(0.0, (now - current.next_check_in_due).total_seconds())
    check_in = CheckInRecord(
        check_in_id=str(uuid4()),
        timestamp=now,
        location=location,
        method=CheckInMethod(method),
        notes=notes,
        response_time_seconds=response_time,
    )
    stats = current.stats.with_check_in(check_in, missed=skipped)

    update_parts = [
        "#check_ins = list_append(if_not_exists(#check_ins, :empty), :check_in)",
        "#next_due = :next_due",
        "#stats = :stats",
        "#updated_at = :updated_at",
        "#version = :new_version",
    ]
    expr_names = {
        "#check_ins": "check_ins",
        "#next_due": "next_check_in_due",
        "#stats": "stats",
        "#updated_at": "updated_at",
        "#version": "version",
        "#status": "status",
    }
    expr_values: dict[str, Any] = {
        ":empty": [],
        ":check_in": [check_in.to_dynamodb()],
        ":next_due": to_epoch_ms(next_due),
        ":stats": stats.to_dynamodb(),
        ":updated_at": to_epoch_ms(now),
        ":new_version": current.version + 1,
        ":current_version": current.version,
        ":active": SessionStatus.ACTIVE.value,
    }
    if location:
        update_parts.append("#location = :location")
        expr_names["#location"] = "location"
        expr_values[":location"] = location.to_dynamodb()

    log.info(
        "recording_check_in",
        session_id=session_id,
        previous_due=current.next_check_in_due.isoformat(),
        next_due=next_due.isoformat(),
        missed=skipped,
    )

    try:
        table.update_item(
            Key=SessionKey(session_id).to_key(),
            UpdateExpression="SET " + ", ".join(update_parts),
            ExpressionAttributeNames=expr_names,
            ExpressionAttributeValues=expr_values,
            ConditionExpression=(
                "attribute_exists(PK) AND #version = :current_version AND #status = :active"
            ),
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            log.warning(
                "conditional_write_failed",
                session_id=session_id,
                expected_version=current.version,
            )
            raise ConditionalWriteError(
                table_name=settings.dynamodb_table_name,
                expected_version=current.version,
            ) from e

        log.error("dynamodb_update_failed", session_id=session_id, error=str(e))
        raise DynamoDBError(
            operation="update",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    updated = load_session(session_id)
    if not updated:
        raise SessionNotFoundError(session_id)
    return updated


def end_session(
    session_id: str,
    reason: SessionStatus | str,
    *,
    now: datetime | None = None,
) -> ProtectionSession:
    """
    End a session with a terminal reason (completed, cancelled, emergency).

    The write is conditional on the status read beforehand so a
    concurrent transition is never overwritten.

    Raises:
        ValueError: If reason is not a terminal end reason
        SessionNotFoundError: If the session doesn't exist
        InvalidStateTransitionError: If the session already ended
        ConditionalWriteError: If the status changed concurrently
        DynamoDBError: On other DynamoDB failures
    """
    settings = get_settings()
    table = _get_table()
    now = now or _utcnow()

    if isinstance(reason, str):
        reason = SessionStatus.from_string(reason)
    if reason not in END_REASONS:
        raise ValueError(f"Invalid end reason: '{reason.value}'")

    current = load_session(session_id)
    if not current:
        raise SessionNotFoundError(session_id)

    validate_transition(current.status, reason)

    log.info(
        "ending_session",
        session_id=session_id,
        old_status=current.status.value,
        reason=reason.value,
    )

    try:
        table.update_item(
            Key=SessionKey(session_id).to_key(),
            UpdateExpression=(
                "SET #status = :new_status, #gsi1pk = :gsi1pk, #ended_at = :ended_at, "
                "#updated_at = :updated_at, #version = :new_version"
            ),
            ExpressionAttributeNames={
                "#status": "status",
                "#gsi1pk": "GSI1PK",
                "#ended_at": "ended_at",
                "#updated_at": "updated_at",
                "#version": "version",
            },
            ExpressionAttributeValues={
                ":new_status": reason.value,
                ":gsi1pk": f"SESSIONS#{reason.value}",
                ":ended_at": to_epoch_ms(now),
                ":updated_at": to_epoch_ms(now),
                ":new_version": current.version + 1,
                ":current_status": current.status.value,
            },
            ConditionExpression="attribute_exists(PK) AND #status = :current_status",
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            log.warning("session_status_changed_concurrently", session_id=session_id)
            raise ConditionalWriteError(
                table_name=settings.dynamodb_table_name,
                expected_version=current.version,
            ) from e

        log.error("dynamodb_update_failed", session_id=session_id, error=str(e))
        raise DynamoDBError(
            operation="update",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info("session_ended", session_id=session_id, status=reason.value)
    return current.model_copy(
        update={
            "status": reason,
            "ended_at": now,
            "updated_at": now,
            "version": current.version + 1,
        }
    )


def mark_session_escalated(
    session_id: str,
    phase: str,
    *,
    terminal: bool = False,
    now: datetime | None = None,
) -> bool:
    """
    Stamp the last escalated phase on a session that is still active.

    With terminal=True the session also transitions to escalated and
    leaves the active-session index.

    Returns:
        True if written; False if the session is no longer active
        (the owner checked in or ended it meanwhile)

    Raises:
        DynamoDBError: On DynamoDB failure other than the status condition
    """
    settings = get_settings()
    table = _get_table()
    now = now or _utcnow()

    update_parts = [
        "#last_phase = :phase",
        "#last_at = :now",
        "#updated_at = :now",
        "#version = #version + :one",
    ]
    expr_names = {
        "#last_phase": "last_escalated_phase",
        "#last_at": "last_escalated_at",
        "#updated_at": "updated_at",
        "#version": "version",
        "#status": "status",
    }
    expr_values: dict[str, Any] = {
        ":phase": phase,
        ":now": to_epoch_ms(now),
        ":one": 1,
        ":active": SessionStatus.ACTIVE.value,
    }
    if terminal:
        validate_transition(SessionStatus.ACTIVE, SessionStatus.ESCALATED)
        update_parts.extend(["#status = :escalated", "#gsi1pk = :gsi1pk"])
        expr_names["#gsi1pk"] = "GSI1PK"
        expr_values[":escalated"] = SessionStatus.ESCALATED.value
        expr_values[":gsi1pk"] = f"SESSIONS#{SessionStatus.ESCALATED.value}"

    try:
        table.update_item(
            Key=SessionKey(session_id).to_key(),
            UpdateExpression="SET " + ", ".join(update_parts),
            ExpressionAttributeNames=expr_names,
            ExpressionAttributeValues=expr_values,
            ConditionExpression="attribute_exists(PK) AND #status = :active",
        )
    except ClientError as e:
        if _is_conditional_failure(e):
            log.warning(
                "escalation_stamp_skipped_session_not_active",
                session_id=session_id,
                phase=phase,
            )
            return False

        log.error("dynamodb_update_failed", session_id=session_id, error=str(e))
        raise DynamoDBError(
            operation="update",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info("session_escalation_stamped", session_id=session_id, phase=phase, terminal=terminal)
    return True


def save_in_app_notification(notification: InAppNotification) -> None:
    """
    Write an in-app notification to the owner's inbox.

    Raises:
        DynamoDBError: On DynamoDB failure
    """
    settings = get_settings()
    table = _get_table()

    try:
        table.put_item(Item=notification.to_dynamodb())
    except ClientError as e:
        log.error(
            "in_app_notification_save_failed",
            user_id=notification.user_id,
            notification_type=notification.notification_type,
            error=str(e),
        )
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info(
        "in_app_notification_saved",
        user_id=notification.user_id,
        session_id=notification.session_id,
        notification_type=notification.notification_type,
    )


def list_in_app_notifications(user_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
    """List the owner's in-app notifications, newest first."""
    settings = get_settings()
    table = _get_table()

    try:
        response = table.query(
            KeyConditionExpression="PK = :pk AND begins_with(SK, :prefix)",
            ExpressionAttributeValues={":pk": f"USER#{user_id}", ":prefix": "NOTIFICATION#"},
            ScanIndexForward=False,
            Limit=limit,
        )
    except ClientError as e:
        log.error("list_notifications_failed", user_id=user_id, error=str(e))
        raise DynamoDBError(
            operation="query",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    return response.get("Items", [])
