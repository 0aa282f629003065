"""
Escalation Engine Configuration

Engine-specific settings: phase thresholds, send pacing, dedup claim
lease and scan deadline handling.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """
    Escalation engine configuration.

    Environment variables are prefixed with ESCALATION_.
    Example: ESCALATION_CRITICAL_ALERT_MINUTES=45
    """

    model_config = SettingsConfigDict(
        env_prefix="ESCALATION_",
        env_file=[".env.local", ".env"],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Phase thresholds (minutes overdue)
    soft_warning_minutes: int = Field(default=0, ge=0)
    medium_alert_minutes: int = Field(default=15, ge=0)
    critical_alert_minutes: int = Field(default=60, ge=0)
    legal_alert_minutes: int = Field(default=1440, ge=0)

    # Outbound pacing
    min_send_interval_ms: int = Field(
        default=600,
        ge=500,
        description="Minimum delay between two sends of one escalation",
    )
    pacing_strategy: Literal["fixed", "token_bucket"] = Field(
        default="fixed",
        description="Send pacing implementation",
    )
    token_bucket_capacity: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Banked sends for token_bucket pacing; spacing stays at least 500ms",
    )
    send_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Attempts per recipient for throttled SES sends",
    )

    # Deduplication
    claim_lease_seconds: int = Field(
        default=300,
        ge=30,
        description="Age after which an unfinished escalation claim may be taken over",
    )

    # Scan bounds
    deadline_margin_seconds: float = Field(
        default=15.0,
        ge=0,
        description="Time reserved before the invocation deadline; no new session starts inside it",
    )

    @model_validator(mode="after")
    def _thresholds_ascending(self) -> "EngineConfig":
        ordered = [
            self.soft_warning_minutes,
            self.medium_alert_minutes,
            self.critical_alert_minutes,
            self.legal_alert_minutes,
        ]
        if ordered != sorted(ordered):
            raise ValueError("Phase thresholds must be ascending by severity")
        return self

    @property
    def min_send_interval_seconds(self) -> float:
        return self.min_send_interval_ms / 1000

    @property
    def thresholds(self) -> dict[str, int]:
        """Threshold table keyed by phase name."""
        return {
            "soft_warning": self.soft_warning_minutes,
            "medium_alert": self.medium_alert_minutes,
            "critical_alert": self.critical_alert_minutes,
            "legal_alert": self.legal_alert_minutes,
        }


@lru_cache
def get_engine_config() -> EngineConfig:
    """Get cached escalation engine configuration."""
    return EngineConfig()
