"""
DynamoDB Models

Pydantic models for items in the ProtectionSessions table.

Key layout:
- Session:          PK SESSION#<session_id>  SK METADATA
- Escalation:       PK SESSION#<session_id>  SK ESCALATION#<phase>
- Emergency audit:  PK SESSION#<session_id>  SK ESCALATION#emergency#<epoch_ms>
- In-app notice:    PK USER#<user_id>        SK NOTIFICATION#<epoch_ms>#<type>

Instants are stored as epoch milliseconds; floats as Decimal.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from escalation.shared.state_machine import SessionStatus

LOCATION_UNAVAILABLE = "Location unavailable"


# =====================================================
# Value helpers
# =====================================================


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: Any) -> datetime | None:
    """Convert stored epoch milliseconds (int or Decimal) to an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def to_decimal(value: float | int | None) -> Decimal | None:
    """Convert a number to Decimal for boto3 (floats are rejected)."""
    if value is None:
        return None
    return Decimal(str(value))


def from_decimal(value: Any) -> float | None:
    """Convert a stored Decimal back to float."""
    if value is None:
        return None
    return float(value)


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =====================================================
# Location
# =====================================================


def format_address(address: Any) -> str:
    """
    Build a readable address line.

    Accepts a plain string or a structured address with
    neighbourhood/suburb, city/town/village, state, country and
    fullAddress keys.
    """
    if not address:
        return LOCATION_UNAVAILABLE
    if isinstance(address, str):
        return address
    parts = [
        address.get("neighbourhood") or address.get("suburb"),
        address.get("city") or address.get("town") or address.get("village"),
        address.get("state"),
        address.get("country"),
    ]
    parts = [p for p in parts if p]
    if parts:
        return ", ".join(parts)
    return address.get("fullAddress") or address.get("full_address") or LOCATION_UNAVAILABLE


class LocationSnapshot(BaseModel):
    """Last known location of the session owner."""

    model_config = ConfigDict(frozen=True)

    lat: float | None = Field(default=None, description="Latitude")
    lng: float | None = Field(default=None, description="Longitude")
    address: str = Field(default=LOCATION_UNAVAILABLE, description="Human-readable address")
    accuracy: float | None = Field(default=None, description="Accuracy in meters")
    captured_at: datetime | None = Field(default=None, description="When the fix was taken")

    @field_validator("captured_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def display(self) -> str:
        """Format as 'address (lat, lng)' for notification templates."""
        has_address = self.address and self.address != LOCATION_UNAVAILABLE
        if self.has_coordinates:
            coords = f"({self.lat:.4f}, {self.lng:.4f})"
            return f"{self.address} {coords}" if has_address else coords
        return self.address if has_address else LOCATION_UNAVAILABLE

    def maps_url(self) -> str | None:
        if not self.has_coordinates:
            return None
        return f"https://maps.google.com/?q={self.lat},{self.lng}"

    @classmethod
    def from_raw(
        cls,
        raw: dict[str, Any] | None,
        *,
        captured_at: datetime | None = None,
    ) -> "LocationSnapshot | None":
        """
        Parse a client-supplied location payload.

        Accepts lat/lng or latitude/longitude, and an address given either
        as a string or as a structured address.
        """
        if not raw:
            return None
        lat = raw.get("lat", raw.get("latitude"))
        lng = raw.get("lng", raw.get("longitude"))
        return cls(
            lat=float(lat) if lat is not None else None,
            lng=float(lng) if lng is not None else None,
            address=format_address(raw.get("address")),
            accuracy=raw.get("accuracy"),
            captured_at=captured_at,
        )

    def to_dynamodb(self) -> dict[str, Any]:
        item: dict[str, Any] = {"address": self.address}
        if self.lat is not None:
            item["lat"] = to_decimal(self.lat)
        if self.lng is not None:
            item["lng"] = to_decimal(self.lng)
        if self.accuracy is not None:
            item["accuracy"] = to_decimal(self.accuracy)
        if self.captured_at:
            item["captured_at"] = to_epoch_ms(self.captured_at)
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any] | None) -> "LocationSnapshot | None":
        if not item:
            return None
        return cls(
            lat=from_decimal(item.get("lat")),
            lng=from_decimal(item.get("lng")),
            address=item.get("address") or LOCATION_UNAVAILABLE,
            accuracy=from_decimal(item.get("accuracy")),
            captured_at=from_epoch_ms(item.get("captured_at")),
        )


# =====================================================
# Check-ins
# =====================================================


class CheckInMethod(str, Enum):
    """How a check-in was performed."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"
    GEOFENCE = "geofence"


class CheckInRecord(BaseModel):
    """A single check-in confirming the owner is safe."""

    model_config = ConfigDict(frozen=True)

    check_in_id: str = Field(..., description="Check-in identifier")
    timestamp: datetime = Field(..., description="When the check-in was recorded")
    location: LocationSnapshot | None = Field(default=None, description="Location snapshot")
    method: CheckInMethod = Field(default=CheckInMethod.MANUAL, description="Check-in method")
    verification: Literal["none", "biometric", "code"] = Field(default="none")
    notes: str = Field(default="", description="Owner notes")
    response_time_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Seconds between the due instant and the check-in (0 when early)",
    )

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def to_dynamodb(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "check_in_id": self.check_in_id,
            "timestamp": to_epoch_ms(self.timestamp),
            "method": self.method.value,
            "verification": self.verification,
            "notes": self.notes,
            "response_time_seconds": to_decimal(self.response_time_seconds),
        }
        if self.location:
            item["location"] = self.location.to_dynamodb()
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "CheckInRecord":
        return cls(
            check_in_id=item.get("check_in_id", ""),
            timestamp=from_epoch_ms(item.get("timestamp", 0)),
            location=LocationSnapshot.from_dynamodb(item.get("location")),
            method=CheckInMethod(item.get("method", "manual")),
            verification=item.get("verification", "none"),
            notes=item.get("notes", ""),
            response_time_seconds=from_decimal(item.get("response_time_seconds")) or 0.0,
        )


class SessionStats(BaseModel):
    """Derived check-in statistics for a session."""

    model_config = ConfigDict(frozen=True)

    total_check_ins: int = Field(default=0, ge=0)
    average_response_time_seconds: float = Field(default=0.0, ge=0)
    missed_check_ins: int = Field(default=0, ge=0)
    last_check_in_at: datetime | None = Field(default=None)

    @field_validator("last_check_in_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    def with_check_in(self, check_in: CheckInRecord, missed: int = 0) -> "SessionStats":
        """Return stats updated with a new check-in (running average)."""
        total = self.total_check_ins + 1
        average = (
            self.average_response_time_seconds * self.total_check_ins
            + check_in.response_time_seconds
        ) / total
        return SessionStats(
            total_check_ins=total,
            average_response_time_seconds=round(average, 3),
            missed_check_ins=self.missed_check_ins + missed,
            last_check_in_at=check_in.timestamp,
        )

    def to_dynamodb(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "total_check_ins": self.total_check_ins,
            "average_response_time_seconds": to_decimal(self.average_response_time_seconds),
            "missed_check_ins": self.missed_check_ins,
        }
        if self.last_check_in_at:
            item["last_check_in_at"] = to_epoch_ms(self.last_check_in_at)
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any] | None) -> "SessionStats":
        item = item or {}
        return cls(
            total_check_ins=int(item.get("total_check_ins", 0)),
            average_response_time_seconds=from_decimal(
                item.get("average_response_time_seconds")
            ) or 0.0,
            missed_check_ins=int(item.get("missed_check_ins", 0)),
            last_check_in_at=from_epoch_ms(item.get("last_check_in_at")),
        )


# =====================================================
# Protection Session
# =====================================================


class ProtectionSession(BaseModel):
    """
    Protection session record stored in DynamoDB.

    PK: SESSION#<session_id>
    SK: METADATA
    GSI1PK: SESSIONS#<status>  (enables the active-session scan)
    """

    model_config = ConfigDict(frozen=True)

    # Identity
    session_id: str = Field(..., description="Session identifier")
    user_id: str = Field(..., description="Owning user identifier")

    # Lifecycle
    status: SessionStatus = Field(default=SessionStatus.ACTIVE, description="Lifecycle state")

    # Timing
    started_at: datetime = Field(..., description="Session creation instant")
    check_in_interval_minutes: int = Field(..., gt=0, description="Check-in cadence")
    next_check_in_due: datetime = Field(..., description="Instant the next check-in is due")
    end_time: datetime | None = Field(default=None, description="Absolute session expiry")
    ended_at: datetime | None = Field(default=None, description="When the session ended")

    # Check-in history
    check_ins: list[CheckInRecord] = Field(default_factory=list)
    stats: SessionStats = Field(default_factory=SessionStats)

    # Snapshot fields used by notification templates
    protection_level: str = Field(default="custom", description="Trip type")
    destination: str = Field(default="", description="Free-text destination")
    notes: str = Field(default="", description="Owner notes")
    location: LocationSnapshot | None = Field(default=None, description="Last known location")

    # Escalation
    escalation_thresholds: dict[str, int] | None = Field(
        default=None,
        description="Per-session phase threshold overrides (phase -> minutes overdue)",
    )
    last_escalated_phase: str | None = Field(default=None)
    last_escalated_at: datetime | None = Field(default=None)

    # Metadata
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)
    version: int = Field(default=1, description="Optimistic locking version")

    @field_validator(
        "started_at",
        "next_check_in_due",
        "end_time",
        "ended_at",
        "last_escalated_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    @property
    def pk(self) -> str:
        return f"SESSION#{self.session_id}"

    @property
    def sk(self) -> str:
        return "METADATA"

    @property
    def gsi1pk(self) -> str:
        return f"SESSIONS#{self.status.value}"

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def is_overdue(self, now: datetime) -> bool:
        """A session is overdue once the current instant passes its due instant."""
        return _ensure_utc(now) > self.next_check_in_due

    def to_dynamodb(self) -> dict[str, Any]:
        """Convert to DynamoDB item format."""
        item: dict[str, Any] = {
            "PK": self.pk,
            "SK": self.sk,
            "GSI1PK": self.gsi1pk,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "started_at": to_epoch_ms(self.started_at),
            "check_in_interval_minutes": self.check_in_interval_minutes,
            "next_check_in_due": to_epoch_ms(self.next_check_in_due),
            "check_ins": [c.to_dynamodb() for c in self.check_ins],
            "stats": self.stats.to_dynamodb(),
            "protection_level": self.protection_level,
            "destination": self.destination,
            "notes": self.notes,
            "version": self.version,
        }

        if self.end_time:
            item["end_time"] = to_epoch_ms(self.end_time)
        if self.ended_at:
            item["ended_at"] = to_epoch_ms(self.ended_at)
        if self.location:
            item["location"] = self.location.to_dynamodb()
        if self.escalation_thresholds:
            item["escalation_thresholds"] = dict(self.escalation_thresholds)
        if self.last_escalated_phase:
            item["last_escalated_phase"] = self.last_escalated_phase
        if self.last_escalated_at:
            item["last_escalated_at"] = to_epoch_ms(self.last_escalated_at)
        if self.created_at:
            item["created_at"] = to_epoch_ms(self.created_at)
        if self.updated_at:
            item["updated_at"] = to_epoch_ms(self.updated_at)

        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "ProtectionSession":
        """Create ProtectionSession from a DynamoDB item."""
        session_id = item.get("session_id")
        if not session_id:
            session_id = str(item.get("PK", "")).replace("SESSION#", "")

        thresholds = item.get("escalation_thresholds")

        return cls(
            session_id=session_id,
            user_id=item.get("user_id", ""),
            status=SessionStatus.from_string(item.get("status", "active")),
            started_at=from_epoch_ms(item.get("started_at", 0)),
            check_in_interval_minutes=int(item.get("check_in_interval_minutes", 0)),
            next_check_in_due=from_epoch_ms(item.get("next_check_in_due", 0)),
            end_time=from_epoch_ms(item.get("end_time")),
            ended_at=from_epoch_ms(item.get("ended_at")),
            check_ins=[CheckInRecord.from_dynamodb(c) for c in item.get("check_ins", [])],
            stats=SessionStats.from_dynamodb(item.get("stats")),
            protection_level=item.get("protection_level", "custom"),
            destination=item.get("destination", ""),
            notes=item.get("notes", ""),
            location=LocationSnapshot.from_dynamodb(item.get("location")),
            escalation_thresholds=(
                {k: int(v) for k, v in thresholds.items()} if thresholds else None
            ),
            last_escalated_phase=item.get("last_escalated_phase"),
            last_escalated_at=from_epoch_ms(item.get("last_escalated_at")),
            created_at=from_epoch_ms(item.get("created_at")),
            updated_at=from_epoch_ms(item.get("updated_at")),
            version=int(item.get("version", 1)),
        )


@dataclass(frozen=True)
class SessionKey:
    """
    DynamoDB key for a session record.

    Utility class for key construction.
    """

    session_id: str

    @property
    def pk(self) -> str:
        return f"SESSION#{self.session_id}"

    @property
    def sk(self) -> str:
        return "METADATA"

    def to_key(self) -> dict[str, str]:
        """Return DynamoDB key dict."""
        return {"PK": self.pk, "SK": self.sk}


# =====================================================
# Escalation Record
# =====================================================


class EscalationState(str, Enum):
    """Progress of an escalation record."""

    CLAIMED = "claimed"
    COMPLETED = "completed"


class EscalationRecord(BaseModel):
    """
    Append-only escalation audit record.

    PK: SESSION#<session_id>
    SK: ESCALATION#<phase>            (one per threshold phase)
        ESCALATION#emergency#<ms>     (one per emergency press)
    """

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., description="Session identifier")
    phase: str = Field(..., description="Escalation phase name")
    state: EscalationState = Field(default=EscalationState.CLAIMED)
    user_id: str | None = Field(default=None)
    reason: str = Field(default="missed_check_in", description="Triggering reason")
    claimed_at: datetime = Field(..., description="When the attempt started")
    completed_at: datetime | None = Field(default=None)
    outcome: dict[str, Any] = Field(default_factory=dict, description="Per-recipient outcome")
    sequence: int | None = Field(default=None, description="Emergency press instant (ms)")

    @field_validator("claimed_at", "completed_at")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return _ensure_utc(value)

    @staticmethod
    def key_for(session_id: str, phase: str, sequence: int | None = None) -> dict[str, str]:
        sk = f"ESCALATION#{phase}"
        if sequence is not None:
            sk = f"{sk}#{sequence:015d}"
        return {"PK": f"SESSION#{session_id}", "SK": sk}

    def to_dynamodb(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            **self.key_for(self.session_id, self.phase, self.sequence),
            "session_id": self.session_id,
            "phase": self.phase,
            "state": self.state.value,
            "reason": self.reason,
            "claimed_at": to_epoch_ms(self.claimed_at),
            "outcome": self.outcome,
        }
        if self.user_id:
            item["user_id"] = self.user_id
        if self.completed_at:
            item["completed_at"] = to_epoch_ms(self.completed_at)
        if self.sequence is not None:
            item["sequence"] = self.sequence
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "EscalationRecord":
        sequence = item.get("sequence")
        return cls(
            session_id=item.get("session_id", ""),
            phase=item.get("phase", ""),
            state=EscalationState(item.get("state", "claimed")),
            user_id=item.get("user_id"),
            reason=item.get("reason", "missed_check_in"),
            claimed_at=from_epoch_ms(item.get("claimed_at", 0)),
            completed_at=from_epoch_ms(item.get("completed_at")),
            outcome=item.get("outcome", {}),
            sequence=int(sequence) if sequence is not None else None,
        )


# =====================================================
# In-app Notification
# =====================================================


class InAppNotification(BaseModel):
    """
    In-app notification shown to the session owner.

    PK: USER#<user_id>
    SK: NOTIFICATION#<created_ms>#<notification_type>
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Recipient user")
    notification_type: str = Field(..., description="Notification template type")
    title: str = Field(..., description="Short title")
    message: str = Field(..., description="Message body")
    priority: Literal["low", "normal", "high", "urgent"] = Field(default="high")
    session_id: str | None = Field(default=None, description="Related session")
    action_url: str | None = Field(default=None)
    created_at: datetime = Field(..., description="Creation instant")

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def to_dynamodb(self) -> dict[str, Any]:
        created_ms = to_epoch_ms(self.created_at)
        item: dict[str, Any] = {
            "PK": f"USER#{self.user_id}",
            "SK": f"NOTIFICATION#{created_ms:015d}#{self.notification_type}",
            "user_id": self.user_id,
            "notification_type": self.notification_type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "status": "pending",
            "channels": ["in_app"],
            "created_at": created_ms,
        }
        if self.session_id:
            item["session_id"] = self.session_id
        if self.action_url:
            item["action_url"] = self.action_url
        return item
