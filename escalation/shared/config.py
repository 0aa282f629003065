"""
Configuration Management

Pydantic-settings based configuration for the check-in escalation service.
All settings can be overridden via environment variables.
"""

from functools import lru_cache
from typing import Any, Literal

from botocore.config import Config
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with SAFETY_ and are case-insensitive.
    Example: SAFETY_DYNAMODB_TABLE_NAME=MyTable
    """

    model_config = SettingsConfigDict(
        env_prefix="SAFETY_",
        env_file=[".env.local", ".env"],  # Try .env.local first
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # DynamoDB Configuration
    dynamodb_table_name: str = Field(
        default="ProtectionSessions",
        description="DynamoDB table holding sessions, profiles and escalation records",
    )
    dynamodb_gsi1_name: str = Field(
        default="GSI1",
        description="GSI1 index name for sessions-by-status queries",
    )
    dynamodb_endpoint_url: str | None = Field(
        default=None,
        description="DynamoDB endpoint URL (for local development)",
    )

    # SES Configuration
    ses_from_address: str | None = Field(
        default=None,
        description="Verified sender address; outbound notifications are disabled without it",
    )
    ses_from_name: str = Field(
        default="Safety Check-In",
        description="Display name for outbound emails",
    )
    ses_configuration_set: str | None = Field(
        default=None,
        description="SES configuration set for tracking",
    )
    ses_endpoint_url: str | None = Field(
        default=None,
        description="SES endpoint URL (use 'mock' for local)",
    )
    ses_connect_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Connect timeout for each SES call",
    )
    ses_read_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Read timeout for each SES call",
    )

    # AWS Configuration
    aws_region: str = Field(
        default="us-west-2",
        description="AWS region",
    )

    # Application Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    cron_secret: str | None = Field(
        default=None,
        description="Shared secret expected as 'Bearer <secret>' from HTTP cron callers",
    )
    app_url: str = Field(
        default="https://app.example.com",
        description="Base URL linked from notification emails",
    )
    emergency_services_number: str = Field(
        default="911",
        description="Emergency number shown in notifications and fallback messages",
    )

    @property
    def notifications_configured(self) -> bool:
        """Whether outbound email notifications can be sent at all."""
        return bool(self.ses_from_address)

    @property
    def dynamodb_config(self) -> dict[str, Any]:
        """DynamoDB client configuration."""
        config: dict[str, Any] = {"region_name": self.aws_region}
        if self.dynamodb_endpoint_url and self.dynamodb_endpoint_url != "mock":
            config["endpoint_url"] = self.dynamodb_endpoint_url
        return config

    @property
    def ses_config(self) -> dict[str, Any]:
        """SES client configuration with bounded per-call timeouts."""
        config: dict[str, Any] = {
            "region_name": self.aws_region,
            "config": Config(
                connect_timeout=self.ses_connect_timeout_seconds,
                read_timeout=self.ses_read_timeout_seconds,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        }
        if self.ses_endpoint_url and self.ses_endpoint_url != "mock":
            config["endpoint_url"] = self.ses_endpoint_url
        return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are loaded only once.
    Call get_settings.cache_clear() in tests after changing the environment.
    """
    return Settings()
