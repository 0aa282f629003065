"""
Email Tools

SES delivery for escalation notifications.
Throttling responses are retried with backoff; every other SES error
surfaces immediately as SESError.
"""

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import structlog
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from escalation.shared.config import get_settings
from escalation.shared.exceptions import (
    ConfigurationError,
    InvalidEmailFormatError,
    SESError,
)

log = structlog.get_logger()

RETRYABLE_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceUnavailable",
})


def _get_client():
    """Get SES client."""
    settings = get_settings()
    return boto3.client("ses", **settings.ses_config)


def _is_retryable(error: BaseException) -> bool:
    if not isinstance(error, ClientError):
        return False
    return error.response["Error"]["Code"] in RETRYABLE_ERROR_CODES


def send_ses_email(
    to_address: str,
    subject: str,
    body_text: str,
    *,
    body_html: str | None = None,
    from_address: str | None = None,
    from_name: str | None = None,
    configuration_set: str | None = None,
    max_attempts: int = 3,
) -> str:
    """
    Send an email via SES.

    Args:
        to_address: Recipient email address
        subject: Email subject
        body_text: Plain text body
        body_html: Optional HTML body
        from_address: Override from address
        from_name: Override from display name
        configuration_set: Override configuration set
        max_attempts: Attempts for throttled sends (1 disables retry)

    Returns:
        SES message ID

    Raises:
        ConfigurationError: If no sender address is configured
        SESError: If send fails
    """
    settings = get_settings()

    sender = from_address or settings.ses_from_address
    if not sender:
        raise ConfigurationError("ses_from_address")

    client = _get_client()
    sender_name = from_name or settings.ses_from_name
    config_set = configuration_set or settings.ses_configuration_set

    source = f"{sender_name} <{sender}>" if sender_name else sender

    message_body = {"Text": {"Data": body_text, "Charset": "UTF-8"}}
    if body_html:
        message_body["Html"] = {"Data": body_html, "Charset": "UTF-8"}

    send_params = {
        "Source": source,
        "Destination": {"ToAddresses": [to_address]},
        "Message": {
            "Subject": {"Data": subject, "Charset": "UTF-8"},
            "Body": message_body,
        },
    }

    if config_set:
        send_params["ConfigurationSetName"] = config_set

    log.info("sending_ses_email", to=to_address, subject=subject[:50])

    retrying = Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )

    try:
        response = retrying(client.send_email, **send_params)
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        error_message = e.response["Error"]["Message"]

        log.error(
            "ses_send_failed",
            to=to_address,
            error_code=error_code,
            error_message=error_message,
        )

        raise SESError(
            operation="send",
            recipient=to_address,
            error_message=f"{error_code}: {error_message}",
        ) from e
    except BotoCoreError as e:
        log.error("ses_send_failed", to=to_address, error_message=str(e))
        raise SESError(
            operation="send",
            recipient=to_address,
            error_message=str(e),
        ) from e

    message_id = response["MessageId"]
    log.info("ses_email_sent", message_id=message_id, to=to_address)
    return message_id


def validate_email_address(email: str) -> bool:
    """
    Validate an email address format.

    Uses email-validator library for RFC compliance.

    Raises:
        InvalidEmailFormatError: If invalid
    """
    from email_validator import EmailNotValidError, validate_email

    try:
        validate_email(email, check_deliverability=False)
        return True
    except EmailNotValidError as e:
        raise InvalidEmailFormatError(
            email_address=email,
            expected_pattern="RFC 5321",
        ) from e
