"""
Escalation Record Tools

Append-only escalation audit trail in the sessions table.

The (session, phase) record is the concurrency-control point for
escalation: it is created with a conditional put before any notification
goes out, so two concurrent scans can never both own the same phase.
Errors surface as DedupStoreError so callers can apply their own
failure policy.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import boto3
from botocore.exceptions import ClientError
import structlog

from escalation.shared.config import get_settings
from escalation.shared.exceptions import DedupStoreError, DynamoDBError
from escalation.shared.models.dynamo import (
    EscalationRecord,
    EscalationState,
    to_epoch_ms,
)

log = structlog.get_logger()

EMERGENCY_PHASE = "emergency"


def _get_table():
    """Get DynamoDB table resource."""
    settings = get_settings()
    dynamodb = boto3.resource("dynamodb", **settings.dynamodb_config)
    return dynamodb.Table(settings.dynamodb_table_name)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def load_escalation_record(session_id: str, phase: str) -> EscalationRecord | None:
    """
    Load the escalation record for (session, phase).

    Raises:
        DedupStoreError: On DynamoDB failure
    """
    table = _get_table()

    try:
        response = table.get_item(
            Key=EscalationRecord.key_for(session_id, phase),
            ConsistentRead=True,
        )
    except ClientError as e:
        raise DedupStoreError(
            operation="check",
            session_id=session_id,
            phase=phase,
            error_message=str(e),
        ) from e

    item = response.get("Item")
    return EscalationRecord.from_dynamodb(item) if item else None


def has_escalation_record(
    session_id: str,
    phase: str,
    *,
    claim_lease_seconds: int,
    now: datetime | None = None,
) -> bool:
    """
    Check whether (session, phase) was already escalated or is in flight.

    A claim older than the lease is treated as abandoned and does not count.

    Raises:
        DedupStoreError: On DynamoDB failure
    """
    record = load_escalation_record(session_id, phase)
    if record is None:
        return False
    if record.state == EscalationState.COMPLETED:
        return True

    now = now or _utcnow()
    return now - record.claimed_at < timedelta(seconds=claim_lease_seconds)


def claim_escalation(
    session_id: str,
    phase: str,
    *,
    claim_lease_seconds: int,
    user_id: str | None = None,
    reason: str = "missed_check_in",
    now: datetime | None = None,
) -> EscalationRecord | None:
    """
    Atomically create the (session, phase) record if absent.

    A stale claim (unfinished and older than the lease) may be taken over.

    Returns:
        The claimed record, or None if another attempt owns the phase

    Raises:
        DedupStoreError: On DynamoDB failure other than the condition
    """
    table = _get_table()
    now = now or _utcnow()

    record = EscalationRecord(
        session_id=session_id,
        phase=phase,
        state=EscalationState.CLAIMED,
        user_id=user_id,
        reason=reason,
        claimed_at=now,
    )
    stale_before = now - timedelta(seconds=claim_lease_seconds)

    try:
        table.put_item(
            Item=record.to_dynamodb(),
            ConditionExpression=(
                "attribute_not_exists(PK) OR "
                "(#state = :claimed AND #claimed_at < :stale_before)"
            ),
            ExpressionAttributeNames={"#state": "state", "#claimed_at": "claimed_at"},
            ExpressionAttributeValues={
                ":claimed": EscalationState.CLAIMED.value,
                ":stale_before": to_epoch_ms(stale_before),
            },
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            log.info("escalation_already_claimed", session_id=session_id, phase=phase)
            return None
        raise DedupStoreError(
            operation="claim",
            session_id=session_id,
            phase=phase,
            error_message=str(e),
        ) from e

    log.info("escalation_claimed", session_id=session_id, phase=phase)
    return record


def complete_escalation(
    session_id: str,
    phase: str,
    outcome: dict[str, Any],
    *,
    user_id: str | None = None,
    reason: str = "missed_check_in",
    now: datetime | None = None,
) -> None:
    """
    Mark (session, phase) completed with its per-recipient outcome.

    Works whether or not a claim exists, so an escalation that ran while
    the claim could not be written is still recorded.

    Raises:
        DedupStoreError: On DynamoDB failure
    """
    table = _get_table()
    now = now or _utcnow()

    update_parts = [
        "#state = :completed",
        "#completed_at = :now",
        "#outcome = :outcome",
        "#session_id = :session_id",
        "#phase = :phase",
        "#reason = :reason",
        "#claimed_at = if_not_exists(#claimed_at, :now)",
    ]
    expr_names = {
        "#state": "state",
        "#completed_at": "completed_at",
        "#outcome": "outcome",
        "#session_id": "session_id",
        "#phase": "phase",
        "#reason": "reason",
        "#claimed_at": "claimed_at",
    }
    expr_values: dict[str, Any] = {
        ":completed": EscalationState.COMPLETED.value,
        ":now": to_epoch_ms(now),
        ":outcome": outcome,
        ":session_id": session_id,
        ":phase": phase,
        ":reason": reason,
    }
    if user_id:
        update_parts.append("#user_id = :user_id")
        expr_names["#user_id"] = "user_id"
        expr_values[":user_id"] = user_id

    try:
        table.update_item(
            Key=EscalationRecord.key_for(session_id, phase),
            UpdateExpression="SET " + ", ".join(update_parts),
            ExpressionAttributeNames=expr_names,
            ExpressionAttributeValues=expr_values,
        )
    except ClientError as e:
        raise DedupStoreError(
            operation="record",
            session_id=session_id,
            phase=phase,
            error_message=str(e),
        ) from e

    log.info("escalation_recorded", session_id=session_id, phase=phase)


def release_escalation(session_id: str, phase: str) -> bool:
    """
    Delete an unfinished claim so the next scan can retry the phase.

    Completed records are never deleted.

    Returns:
        True if a claim was released

    Raises:
        DedupStoreError: On DynamoDB failure other than the condition
    """
    table = _get_table()

    try:
        table.delete_item(
            Key=EscalationRecord.key_for(session_id, phase),
            ConditionExpression="#state = :claimed",
            ExpressionAttributeNames={"#state": "state"},
            ExpressionAttributeValues={":claimed": EscalationState.CLAIMED.value},
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            log.warning("escalation_release_skipped", session_id=session_id, phase=phase)
            return False
        raise DedupStoreError(
            operation="release",
            session_id=session_id,
            phase=phase,
            error_message=str(e),
        ) from e

    log.info("escalation_released", session_id=session_id, phase=phase)
    return True


def append_emergency_record(
    session_id: str,
    user_id: str,
    outcome: dict[str, Any],
    *,
    now: datetime | None = None,
) -> EscalationRecord:
    """
    Append an audit record for one emergency broadcast.

    Every press gets its own record, keyed by its instant.

    Raises:
        DynamoDBError: On DynamoDB failure
    """
    settings = get_settings()
    table = _get_table()
    now = now or _utcnow()

    record = EscalationRecord(
        session_id=session_id,
        phase=EMERGENCY_PHASE,
        state=EscalationState.COMPLETED,
        user_id=user_id,
        reason="manual_emergency",
        claimed_at=now,
        completed_at=now,
        outcome=outcome,
        sequence=to_epoch_ms(now),
    )

    try:
        table.put_item(Item=record.to_dynamodb())
    except ClientError as e:
        log.error("emergency_record_failed", session_id=session_id, error=str(e))
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info("emergency_recorded", session_id=session_id, user_id=user_id)
    return record


def list_session_escalations(session_id: str) -> list[EscalationRecord]:
    """
    List every escalation record of a session, oldest phase key first.

    Raises:
        DynamoDBError: On DynamoDB failure
    """
    settings = get_settings()
    table = _get_table()

    query_params: dict[str, Any] = {
        "KeyConditionExpression": "PK = :pk AND begins_with(SK, :prefix)",
        "ExpressionAttributeValues": {
            ":pk": f"SESSION#{session_id}",
            ":prefix": "ESCALATION#",
        },
    }

    try:
        response = table.query(**query_params)
        items = response.get("Items", [])
        while "LastEvaluatedKey" in response:
            query_params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
            response = table.query(**query_params)
            items.extend(response.get("Items", []))
    except ClientError as e:
        log.error("list_escalations_failed", session_id=session_id, error=str(e))
        raise DynamoDBError(
            operation="query",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    return [EscalationRecord.from_dynamodb(item) for item in items]
