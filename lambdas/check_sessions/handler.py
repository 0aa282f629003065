"""
CheckSessions Lambda Handler

Main entry point for the periodic escalation scan.
Loads every active protection session, computes its escalation phase
and executes phases that have not been escalated yet.

Trigger: EventBridge Scheduled Rule (e.g., rate(5 minutes)) or an HTTP
cron caller presenting "Authorization: Bearer <SAFETY_CRON_SECRET>"
Output: Scan summary (checked, escalated, per-phase counts, errors)

Flow:
1. Authorize HTTP callers against the cron secret (scheduled events are trusted)
2. Parse optional dry_run flag
3. Derive the scan deadline from the remaining invocation time
4. Run the scan
5. Return summary (503 when outbound notifications are not configured)
"""

import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from escalation.engine.scanner import run_scan
from escalation.shared.config import get_settings
from escalation.shared.exceptions import DynamoDBError

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.getLogger().setLevel(get_settings().log_level)

log = structlog.get_logger()


def _is_scheduled_event(event: dict[str, Any]) -> bool:
    return event.get("source") == "aws.events" or event.get("detail-type") == "Scheduled Event"


def _is_authorized(event: dict[str, Any]) -> bool:
    """
    Check the bearer secret on HTTP invocations.

    Scheduled events and deployments without a secret are always allowed.
    """
    if _is_scheduled_event(event):
        return True

    cron_secret = get_settings().cron_secret
    if not cron_secret:
        return True

    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    presented = headers.get("authorization") or ""
    return hmac.compare_digest(presented, f"Bearer {cron_secret}")


def _parse_options(event: dict[str, Any]) -> dict[str, Any]:
    """
    Parse optional scan options.

    Scheduled rules may carry {"dry_run": true} in the detail; HTTP
    callers may pass ?dry_run=true.
    """
    options = {"dry_run": False}

    detail = event.get("detail", {})
    if isinstance(detail, str):
        try:
            detail = json.loads(detail)
        except json.JSONDecodeError:
            detail = {}
    if isinstance(detail, dict):
        options["dry_run"] = bool(detail.get("dry_run", False))

    query = event.get("queryStringParameters") or {}
    if str(query.get("dry_run", "")).lower() in ("1", "true", "yes"):
        options["dry_run"] = True

    return options


def _deadline(context: Any) -> datetime | None:
    get_remaining = getattr(context, "get_remaining_time_in_millis", None)
    if get_remaining is None:
        return None
    return datetime.now(timezone.utc) + timedelta(milliseconds=get_remaining())


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Main Lambda handler for the periodic escalation scan.

    Args:
        event: EventBridge scheduled event or HTTP cron request
        context: Lambda context

    Returns:
        Scan result summary
    """
    if not _is_authorized(event):
        log.warning("cron_unauthorized")
        return {"statusCode": 401, "body": {"error": "Unauthorized"}}

    options = _parse_options(event)
    deadline = _deadline(context)

    log.info(
        "escalation_scan_invoked",
        dry_run=options["dry_run"],
        scheduled=_is_scheduled_event(event),
        deadline=deadline.isoformat() if deadline else None,
    )

    try:
        summary = run_scan(deadline=deadline, dry_run=options["dry_run"])
    except DynamoDBError as e:
        log.error("escalation_scan_failed", error=str(e))
        return {
            "statusCode": 500,
            "body": {"success": False, "error": str(e)},
        }
    except Exception as e:
        log.exception("escalation_scan_crashed", error=str(e))
        return {
            "statusCode": 500,
            "body": {"success": False, "error": f"Critical error: {e}"},
        }

    body = {
        "success": not summary.service_unavailable,
        "message": (
            "Notification service not configured"
            if summary.service_unavailable
            else f"{summary.escalated} escalation(s) from {summary.checked} session(s)"
        ),
        **summary.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return {
        "statusCode": 503 if summary.service_unavailable else 200,
        "body": body,
    }
