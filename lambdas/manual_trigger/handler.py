"""
ManualTrigger Lambda Handler

API Gateway (proxy integration) entry point for on-demand escalation.

Routes:
- POST .../check       body {"sessionId"}                          one scan iteration
- POST .../emergency   body {"userId", "sessionId"?, "location"?}  emergency broadcast
- GET  .../status      ?sessionId=                                 escalation status view

A failed emergency response always tells the caller to contact
emergency services directly.
"""

import base64
import json
import logging
from typing import Any

import structlog

from escalation.engine.scanner import OutcomeKind
from escalation.engine.trigger import session_status, trigger_emergency, trigger_for_session
from escalation.shared.config import get_settings
from escalation.shared.exceptions import (
    ConfigurationError,
    NotificationTemplateError,
    ProfileNotFoundError,
    SessionNotFoundError,
)

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


class BadRequest(Exception):
    """Malformed request (400)."""


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, default=str),
    }


def _emergency_advice() -> str:
    number = get_settings().emergency_services_number
    return f"Please contact emergency services directly ({number})."


def _route(event: dict[str, Any]) -> tuple[str, str]:
    """(METHOD, path) for REST (v1) and HTTP (v2) API payloads."""
    http = (event.get("requestContext") or {}).get("http") or {}
    method = event.get("httpMethod") or http.get("method") or ""
    path = event.get("path") or event.get("rawPath") or http.get("path") or ""
    return method.upper(), path.rstrip("/")


def _json_body(event: dict[str, Any]) -> dict[str, Any]:
    body = event.get("body")
    if body is None or body == "":
        return {}
    if isinstance(body, dict):
        return body
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as e:
        raise BadRequest("Request body must be valid JSON") from e
    if not isinstance(parsed, dict):
        raise BadRequest("Request body must be a JSON object")
    return parsed


# =====================================================
# Route handlers
# =====================================================


def _handle_check(event: dict[str, Any]) -> dict[str, Any]:
    body = _json_body(event)
    session_id = body.get("sessionId")
    if not session_id:
        return _response(400, {"error": "sessionId required"})

    log.info("manual_check_requested", session_id=session_id)

    try:
        outcome = trigger_for_session(session_id)
    except SessionNotFoundError:
        return _response(404, {"error": "Session not found", "sessionId": session_id})

    payload = outcome.to_dict()
    phase = outcome.phase.value if outcome.phase else None

    if outcome.kind == OutcomeKind.NO_ACTION:
        return _response(200, {"success": True, "message": "No escalation needed", **payload})
    if outcome.kind in (OutcomeKind.ALREADY_ESCALATED, OutcomeKind.CLAIMED_ELSEWHERE):
        return _response(
            200,
            {"success": True, "message": f"Already escalated to {phase}", **payload},
        )
    if outcome.kind == OutcomeKind.ESCALATED:
        return _response(200, {"success": True, "message": f"Escalated to {phase}", **payload})
    if outcome.kind == OutcomeKind.SERVICE_UNAVAILABLE:
        return _response(
            503,
            {"success": False, "message": "Notification service not configured", **payload},
        )
    return _response(500, {"success": False, "message": "Escalation failed", **payload})


def _handle_emergency(event: dict[str, Any]) -> dict[str, Any]:
    body = _json_body(event)
    user_id = body.get("userId")
    if not user_id:
        return _response(400, {"error": "userId required", "advice": _emergency_advice()})

    session_id = body.get("sessionId")
    location = body.get("location")
    if location is not None and not isinstance(location, dict):
        return _response(400, {"error": "location must be an object", "advice": _emergency_advice()})

    log.warning("emergency_requested", user_id=user_id, session_id=session_id)

    try:
        result = trigger_emergency(user_id, session_id, location)
    except ConfigurationError as e:
        return _response(
            503,
            {
                "success": False,
                "message": "Emergency notification service not configured",
                "error": str(e),
                "advice": _emergency_advice(),
            },
        )
    except ProfileNotFoundError as e:
        return _response(
            404,
            {
                "success": False,
                "message": "User profile not found",
                "error": str(e),
                "advice": _emergency_advice(),
            },
        )
    except NotificationTemplateError as e:
        log.error("emergency_template_failed", user_id=user_id, error=str(e))
        return _response(
            500,
            {
                "success": False,
                "message": "Failed to prepare emergency notifications",
                "error": str(e),
                "advice": _emergency_advice(),
            },
        )

    breakdown = result.breakdown()
    reached = result.succeeded_count
    payload: dict[str, Any] = {
        "success": reached > 0,
        "sessionId": result.session_id,
        "results": breakdown,
        "sessionTerminated": result.session_terminated,
        "recipients": [r.to_dict() for r in result.results],
    }

    if reached == 0:
        payload["message"] = "Failed to send emergency notifications"
        payload["advice"] = _emergency_advice()
        return _response(500, payload)

    contacts_reached = (
        breakdown["emergency_contacts"]["success"] + breakdown["legal_contacts"]["success"]
    )
    payload["message"] = f"Emergency alerts sent to {contacts_reached} contact(s)"
    if result.failed_count:
        payload["advice"] = _emergency_advice()
    return _response(200, payload)


def _handle_status(event: dict[str, Any]) -> dict[str, Any]:
    query = event.get("queryStringParameters") or {}
    session_id = query.get("sessionId")
    if not session_id:
        return _response(400, {"error": "sessionId required"})

    try:
        status = session_status(session_id)
    except SessionNotFoundError:
        return _response(404, {"error": "Session not found", "sessionId": session_id})

    return _response(200, {"success": True, **status})


ROUTES = {
    ("POST", "check"): _handle_check,
    ("POST", "emergency"): _handle_emergency,
    ("GET", "status"): _handle_status,
}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    AWS Lambda handler for manual escalation requests.

    Args:
        event: API Gateway proxy event
        context: Lambda context

    Returns:
        API Gateway proxy response
    """
    request_id = getattr(context, "aws_request_id", "local")
    method, path = _route(event)
    action = path.rsplit("/", 1)[-1] if path else ""

    log.info("manual_trigger_request", request_id=request_id, method=method, path=path)

    handler = ROUTES.get((method, action))
    if handler is None:
        if any(route_action == action for _, route_action in ROUTES):
            return _response(405, {"error": f"Method {method} not allowed"})
        return _response(404, {"error": "Not found"})

    try:
        return handler(event)
    except BadRequest as e:
        return _response(400, {"error": str(e)})
    except Exception as e:
        log.error("manual_trigger_failed", request_id=request_id, error=str(e), exc_info=True)
        body: dict[str, Any] = {"success": False, "error": str(e)}
        if action == "emergency":
            body["advice"] = _emergency_advice()
        return _response(500, body)
