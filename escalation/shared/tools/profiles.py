"""
Profile Tools

Read and write owner profiles (with their emergency and legal contacts).
"""

import boto3
from botocore.exceptions import ClientError
import structlog

from escalation.shared.config import get_settings
from escalation.shared.exceptions import DynamoDBError
from escalation.shared.models.profile import UserProfile

log = structlog.get_logger()


def _get_table():
    """Get DynamoDB table resource."""
    settings = get_settings()
    dynamodb = boto3.resource("dynamodb", **settings.dynamodb_config)
    return dynamodb.Table(settings.dynamodb_table_name)


def load_user_profile(user_id: str) -> UserProfile | None:
    """
    Load a user profile.

    Returns:
        UserProfile if found, None otherwise

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    settings = get_settings()
    table = _get_table()

    try:
        response = table.get_item(
            Key={"PK": f"USER#{user_id}", "SK": "PROFILE"},
            ConsistentRead=True,
        )
    except ClientError as e:
        log.error("profile_load_failed", user_id=user_id, error=str(e))
        raise DynamoDBError(
            operation="get",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    item = response.get("Item")
    if not item:
        log.debug("profile_not_found", user_id=user_id)
        return None
    return UserProfile.from_dynamodb(item)


def save_user_profile(profile: UserProfile) -> UserProfile:
    """
    Create or replace a user profile.

    Raises:
        DynamoDBError: On DynamoDB operation failure
    """
    settings = get_settings()
    table = _get_table()

    try:
        table.put_item(Item=profile.to_dynamodb())
    except ClientError as e:
        log.error("profile_save_failed", user_id=profile.user_id, error=str(e))
        raise DynamoDBError(
            operation="put",
            table_name=settings.dynamodb_table_name,
            error_message=str(e),
        ) from e

    log.info(
        "profile_saved",
        user_id=profile.user_id,
        contacts=len(profile.emergency_contacts),
    )
    return profile
