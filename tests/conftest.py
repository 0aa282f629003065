"""
Pytest Configuration and Shared Fixtures

Provides moto AWS mocking, sample sessions and profiles, and test utilities.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import boto3
from botocore.exceptions import ClientError
import pytest
from moto import mock_aws

# Set test environment before importing application modules
os.environ["SAFETY_DYNAMODB_TABLE_NAME"] = "TestProtectionSessions"
os.environ["SAFETY_SES_FROM_ADDRESS"] = "alerts@example.com"
os.environ["SAFETY_AWS_REGION"] = "us-west-2"
os.environ["SAFETY_APP_URL"] = "https://safety.example.com"
os.environ["AWS_DEFAULT_REGION"] = "us-west-2"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"

TABLE_NAME = "TestProtectionSessions"
SENDER = "alerts@example.com"


@pytest.fixture(autouse=True)
def reset_cached_settings():
    """Drop cached settings so per-test environment changes apply."""
    from escalation.engine.config import get_engine_config
    from escalation.shared.config import get_settings

    get_settings.cache_clear()
    get_engine_config.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine_config.cache_clear()


# --- Time Fixtures ---


@pytest.fixture
def frozen_now() -> datetime:
    """Fixed instant for deterministic tests."""
    return datetime(2025, 2, 6, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_start(frozen_now: datetime) -> datetime:
    """Start instant of the sample session (two hours before frozen_now)."""
    return frozen_now - timedelta(hours=2)


# --- AWS Mocking Fixtures ---


@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    return {
        "aws_access_key_id": "testing",
        "aws_secret_access_key": "testing",
        "region_name": "us-west-2",
    }


def _create_table(dynamodb):
    try:
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
                {"AttributeName": "GSI1PK", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "GSI1",
                    "KeySchema": [
                        {"AttributeName": "GSI1PK", "KeyType": "HASH"},
                        {"AttributeName": "SK", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                    "ProvisionedThroughput": {
                        "ReadCapacityUnits": 5,
                        "WriteCapacityUnits": 5,
                    },
                }
            ],
            ProvisionedThroughput={
                "ReadCapacityUnits": 5,
                "WriteCapacityUnits": 5,
            },
        )
        table.meta.client.get_waiter("table_exists").wait(TableName=TABLE_NAME)
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") != "ResourceInUseException":
            raise
        table = dynamodb.Table(TABLE_NAME)
    return table


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """
    Create a mocked DynamoDB table.

    Creates the ProtectionSessions table with GSI1 (sessions by status).
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        _create_table(dynamodb)
        yield dynamodb


@pytest.fixture
def mock_ses(aws_credentials):
    """Create a mocked SES client with verified sender identity."""
    with mock_aws():
        ses = boto3.client("ses", **aws_credentials)
        ses.verify_email_identity(EmailAddress=SENDER)
        yield ses


@pytest.fixture
def mock_aws_all(aws_credentials):
    """
    Mock all AWS services used by the application.

    Provides the sessions table and a verified SES sender.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", **aws_credentials)
        _create_table(dynamodb)

        ses = boto3.client("ses", **aws_credentials)
        ses.verify_email_identity(EmailAddress=SENDER)

        yield {
            "dynamodb": dynamodb,
            "table": dynamodb.Table(TABLE_NAME),
            "ses": ses,
        }


# --- ID Fixtures ---


@pytest.fixture
def user_id() -> str:
    """Sample owner ID."""
    return "user-alex-001"


@pytest.fixture
def session_id() -> str:
    """Sample session ID."""
    return "session-night-walk-001"


# --- Profile Fixtures ---


@pytest.fixture
def sample_profile(user_id: str):
    """Owner with two emergency contacts, one legal contact and one inactive contact."""
    from escalation.shared.models.profile import Contact, UserProfile

    return UserProfile(
        user_id=user_id,
        email="alex@example.com",
        full_name="Alex Morgan",
        display_name="Alex",
        phone="+15550100",
        emergency_contacts=[
            Contact(
                contact_id="c-1",
                name="Jamie Morgan",
                relationship="sibling",
                email="jamie@example.com",
                priority=1,
            ),
            Contact(
                contact_id="c-2",
                name="Riley Chen",
                relationship="friend",
                email="riley@example.com",
                priority=2,
            ),
            Contact(
                contact_id="c-3",
                name="Sam Ortiz",
                relationship="friend",
                email="sam@example.com",
                priority=3,
                is_active=False,
            ),
            Contact(
                contact_id="c-legal",
                name="Dana Park",
                relationship="counsel",
                email="intake@legalaid.example.org",
                priority=4,
                is_legal=True,
                organization="Legal Aid Society",
            ),
        ],
    )


# --- Session Fixtures ---


@pytest.fixture
def make_session(user_id: str, session_id: str, session_start: datetime) -> Callable[..., Any]:
    """
    Factory for ProtectionSession models.

    Defaults to an active session started at session_start with a
    60-minute interval (first check-in due one hour later).
    """
    from escalation.shared.models.dynamo import LocationSnapshot, ProtectionSession

    def _make(**overrides: Any) -> ProtectionSession:
        started_at = overrides.pop("started_at", session_start)
        interval = overrides.pop("check_in_interval_minutes", 60)
        values: dict[str, Any] = {
            "session_id": session_id,
            "user_id": user_id,
            "started_at": started_at,
            "check_in_interval_minutes": interval,
            "next_check_in_due": started_at + timedelta(minutes=interval),
            "protection_level": "night_walk",
            "destination": "Riverside Park",
            "location": LocationSnapshot(lat=40.7812, lng=-73.9665, address="Upper West Side, New York"),
            "created_at": started_at,
            "updated_at": started_at,
        }
        values.update(overrides)
        return ProtectionSession(**values)

    return _make


@pytest.fixture
def sample_session(make_session):
    """Active session whose first check-in is due one hour after start."""
    return make_session()


# --- Engine Fixtures ---


class RecordingSleep:
    """Fake sleep that records requested durations and advances a fake clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.calls: list[float] = []

    def clock(self) -> float:
        return self.now

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    """Fake clock/sleep pair for pacing assertions."""
    return RecordingSleep()


@pytest.fixture
def no_wait_pacer_factory(fake_sleep: RecordingSleep):
    """Pacer factory whose waits never block the test."""
    from escalation.engine.pacing import FixedIntervalPacer

    def _factory():
        return FixedIntervalPacer(0.6, clock=fake_sleep.clock, sleep=fake_sleep)

    return _factory


@pytest.fixture
def engine_config():
    """Engine configuration with default thresholds."""
    from escalation.engine.config import EngineConfig

    return EngineConfig()
