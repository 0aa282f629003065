"""
User Profile Models

Owner profile and the emergency/legal contacts notified during escalation.

PK: USER#<user_id>
SK: PROFILE
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

NotifyChannel = Literal["email", "sms", "push"]


class Contact(BaseModel):
    """
    A person or organization notified when the owner misses check-ins.

    Legal contacts (is_legal=True) are organizational contacts reached
    only at the most severe tier; everyone else is a personal
    emergency contact.
    """

    model_config = ConfigDict(frozen=True)

    contact_id: str = Field(..., description="Contact identifier")
    name: str = Field(..., description="Display name")
    relationship: str = Field(default="", description="Relationship to the owner")
    phone: str | None = Field(default=None)
    email: str | None = Field(default=None, description="Notification address")
    priority: int = Field(default=1, ge=1, description="1 = first to contact")
    notify_via: list[NotifyChannel] = Field(default_factory=lambda: ["email"])
    is_active: bool = Field(default=True)
    is_legal: bool = Field(default=False, description="Organizational/legal contact")
    organization: str | None = Field(default=None, description="Legal organization name")

    @property
    def display_name(self) -> str:
        if self.is_legal and self.organization:
            return f"{self.name} ({self.organization})"
        return self.name

    def to_dynamodb(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "contact_id": self.contact_id,
            "name": self.name,
            "relationship": self.relationship,
            "priority": self.priority,
            "notify_via": list(self.notify_via),
            "is_active": self.is_active,
            "metadata": {"is_legal": self.is_legal},
        }
        if self.phone:
            item["phone"] = self.phone
        if self.email:
            item["email"] = self.email
        if self.organization:
            item["metadata"]["organization"] = self.organization
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "Contact":
        metadata = item.get("metadata") or {}
        return cls(
            contact_id=item.get("contact_id", ""),
            name=item.get("name", ""),
            relationship=item.get("relationship", ""),
            phone=item.get("phone"),
            email=item.get("email"),
            priority=int(item.get("priority", 1)),
            notify_via=item.get("notify_via", ["email"]),
            is_active=bool(item.get("is_active", True)),
            is_legal=bool(metadata.get("is_legal", item.get("is_legal", False))),
            organization=metadata.get("organization", item.get("organization")),
        )


class UserProfile(BaseModel):
    """Session owner's profile as read by the escalation engine."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="User identifier")
    email: str | None = Field(default=None, description="Owner notification address")
    full_name: str = Field(default="", description="Legal/full name")
    display_name: str | None = Field(default=None, description="Preferred name")
    phone: str | None = Field(default=None)
    emergency_contacts: list[Contact] = Field(default_factory=list)
    escalation_thresholds: dict[str, int] | None = Field(
        default=None,
        description="Owner's phase threshold tuning (phase -> minutes overdue)",
    )

    @property
    def pk(self) -> str:
        return f"USER#{self.user_id}"

    @property
    def sk(self) -> str:
        return "PROFILE"

    @property
    def name(self) -> str:
        """Name used in notification templates."""
        return self.display_name or self.full_name or "A user"

    def emergency_only(self) -> list[Contact]:
        """Active personal emergency contacts, in stored order."""
        return [c for c in self.emergency_contacts if c.is_active and not c.is_legal]

    def legal_only(self) -> list[Contact]:
        """Active legal/organizational contacts, in stored order."""
        return [c for c in self.emergency_contacts if c.is_active and c.is_legal]

    def to_dynamodb(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "PK": self.pk,
            "SK": self.sk,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "emergency_contacts": [c.to_dynamodb() for c in self.emergency_contacts],
        }
        if self.email:
            item["email"] = self.email
        if self.display_name:
            item["display_name"] = self.display_name
        if self.phone:
            item["phone"] = self.phone
        if self.escalation_thresholds:
            item["escalation_thresholds"] = dict(self.escalation_thresholds)
        return item

    @classmethod
    def from_dynamodb(cls, item: dict[str, Any]) -> "UserProfile":
        user_id = item.get("user_id") or str(item.get("PK", "")).replace("USER#", "")
        thresholds = item.get("escalation_thresholds")
        return cls(
            user_id=user_id,
            email=item.get("email"),
            full_name=item.get("full_name", ""),
            display_name=item.get("display_name"),
            phone=item.get("phone"),
            emergency_contacts=[
                Contact.from_dynamodb(c) for c in item.get("emergency_contacts", [])
            ],
            escalation_thresholds=(
                {k: int(v) for k, v in thresholds.items()} if thresholds else None
            ),
        )
