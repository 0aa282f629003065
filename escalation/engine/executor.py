"""
Escalation Executor

Performs the notification side effects of one escalation phase and
reports per-recipient success or failure.

Which recipients a phase reaches is a lookup in PHASE_PLANS (phase ->
ordered delivery steps), not a branching chain. Every notification of
an execution is rendered before the first one is sent, so a template
failure aborts the phase before anyone is contacted. Sends are
serialized through a pacer that enforces the minimum inter-send
interval, and within a step recipients are reached in stored order.

Failure policy:
- A recipient's delivery failure is recorded in the result and never
  raised.
- A missing owner profile raises ProfileNotFoundError.
- A template failure raises NotificationTemplateError.
- Email phases raise ConfigurationError when no sender is configured.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Literal

import structlog

from escalation.engine.config import EngineConfig, get_engine_config
from escalation.engine.pacing import Pacer, build_pacer
from escalation.engine.phases import EscalationPhase, time_until_next_phase
from escalation.engine.templates import (
    NotificationType,
    RenderedNotification,
    build_template_context,
    render_notification,
)
from escalation.shared.config import Settings, get_settings
from escalation.shared.exceptions import (
    ConfigurationError,
    ConditionalWriteError,
    DynamoDBError,
    InvalidStateTransitionError,
    ProfileNotFoundError,
    RecipientDeliveryError,
    SESError,
    SessionNotFoundError,
)
from escalation.shared.models.dynamo import (
    InAppNotification,
    LocationSnapshot,
    ProtectionSession,
)
from escalation.shared.models.profile import Contact, UserProfile
from escalation.shared.state_machine import SessionStatus
from escalation.shared.tools.dynamodb import end_session, save_in_app_notification
from escalation.shared.tools.email import send_ses_email
from escalation.shared.tools.profiles import load_user_profile

log = structlog.get_logger()


class RecipientCategory(str, Enum):
    """Recipient groups, in the order they are notified."""

    USER = "user"
    EMERGENCY_CONTACTS = "emergency_contacts"
    LEGAL_CONTACTS = "legal_contacts"


CATEGORY_ORDER: tuple[RecipientCategory, ...] = (
    RecipientCategory.USER,
    RecipientCategory.EMERGENCY_CONTACTS,
    RecipientCategory.LEGAL_CONTACTS,
)


@dataclass(frozen=True)
class DeliveryStep:
    """One recipient category reached with one template over one channel."""

    category: RecipientCategory
    notification_type: NotificationType
    channel: Literal["email", "in_app"] = "email"


@dataclass(frozen=True)
class PhasePlan:
    """
    What executing a phase means.

    terminal: the last threshold phase; the session leaves the active set
    ends_session: the session is force-terminated to emergency
    requires_profile: a missing profile is a precondition violation
    best_effort: the phase counts as delivered even if every step failed
    """

    phase: EscalationPhase
    steps: tuple[DeliveryStep, ...]
    terminal: bool = False
    ends_session: bool = False
    requires_profile: bool = True
    best_effort: bool = False

    @property
    def uses_email(self) -> bool:
        return any(step.channel == "email" for step in self.steps)


PHASE_PLANS: dict[EscalationPhase, PhasePlan] = {
    EscalationPhase.SOFT_WARNING: PhasePlan(
        phase=EscalationPhase.SOFT_WARNING,
        steps=(
            DeliveryStep(
                RecipientCategory.USER,
                NotificationType.SOFT_WARNING_IN_APP,
                channel="in_app",
            ),
        ),
        requires_profile=False,
        best_effort=True,
    ),
    EscalationPhase.MEDIUM_ALERT: PhasePlan(
        phase=EscalationPhase.MEDIUM_ALERT,
        steps=(DeliveryStep(RecipientCategory.USER, NotificationType.MEDIUM_ALERT_OWNER),),
    ),
    EscalationPhase.CRITICAL_ALERT: PhasePlan(
        phase=EscalationPhase.CRITICAL_ALERT,
        steps=(
            DeliveryStep(
                RecipientCategory.EMERGENCY_CONTACTS,
                NotificationType.CRITICAL_ALERT_CONTACT,
            ),
        ),
    ),
    EscalationPhase.LEGAL_ALERT: PhasePlan(
        phase=EscalationPhase.LEGAL_ALERT,
        steps=(
            DeliveryStep(
                RecipientCategory.LEGAL_CONTACTS,
                NotificationType.LEGAL_ALERT_CONTACT,
            ),
        ),
        terminal=True,
    ),
    EscalationPhase.EMERGENCY: PhasePlan(
        phase=EscalationPhase.EMERGENCY,
        steps=(
            DeliveryStep(RecipientCategory.USER, NotificationType.EMERGENCY_OWNER),
            DeliveryStep(RecipientCategory.EMERGENCY_CONTACTS, NotificationType.EMERGENCY_CONTACT),
            DeliveryStep(RecipientCategory.LEGAL_CONTACTS, NotificationType.EMERGENCY_LEGAL),
        ),
        ends_session=True,
    ),
}


@dataclass
class RecipientResult:
    """Outcome of notifying one recipient."""

    category: RecipientCategory
    recipient: str
    name: str
    channel: str
    success: bool
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category": self.category.value,
            "recipient": self.recipient,
            "name": self.name,
            "channel": self.channel,
            "success": self.success,
        }
        if self.message_id:
            data["message_id"] = self.message_id
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ExecutionResult:
    """Per-recipient outcome of one phase execution."""

    phase: EscalationPhase
    user_id: str
    session_id: str | None = None
    results: list[RecipientResult] = field(default_factory=list)
    session_terminated: bool | None = None
    executed_at: datetime | None = None

    @property
    def attempted(self) -> int:
        return len(self.results)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def succeeded(self) -> bool:
        """Whether every attempted recipient was reached."""
        return self.failed_count == 0

    @property
    def all_failed(self) -> bool:
        """Recipients existed and none was reached."""
        return self.attempted > 0 and self.succeeded_count == 0

    def for_category(self, category: RecipientCategory) -> list[RecipientResult]:
        return [r for r in self.results if r.category == category]

    def breakdown(self) -> dict[str, dict[str, int]]:
        """Success/failure counts per recipient category."""
        counts: dict[str, dict[str, int]] = {}
        for category in CATEGORY_ORDER:
            results = self.for_category(category)
            counts[category.value] = {
                "success": sum(1 for r in results if r.success),
                "failed": sum(1 for r in results if not r.success),
            }
        return counts

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "phase": self.phase.value,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "attempted": self.attempted,
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "breakdown": self.breakdown(),
            "recipients": [r.to_dict() for r in self.results],
        }
        if self.session_terminated is not None:
            data["session_terminated"] = self.session_terminated
        if self.executed_at:
            data["executed_at"] = self.executed_at.isoformat()
        return data


@dataclass(frozen=True)
class _PreparedDelivery:
    step: DeliveryStep
    recipient: str
    name: str
    rendered: RenderedNotification


class EscalationExecutor:
    """
    Executes escalation phases for sessions.

    Collaborators default to the shared tools and can be replaced for
    testing or alternative backends.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        config: EngineConfig | None = None,
        pacer_factory: Callable[[], Pacer] | None = None,
        send_email: Callable[..., str] = send_ses_email,
        load_profile: Callable[[str], UserProfile | None] = load_user_profile,
        save_notification: Callable[[InAppNotification], None] = save_in_app_notification,
        terminate_session: Callable[..., ProtectionSession] = end_session,
    ):
        self._settings = settings or get_settings()
        self._config = config or get_engine_config()
        self._pacer_factory = pacer_factory or self._default_pacer
        self._send_email = send_email
        self._load_profile = load_profile
        self._save_notification = save_notification
        self._terminate_session = terminate_session

    def _default_pacer(self) -> Pacer:
        return build_pacer(
            self._config.pacing_strategy,
            self._config.min_send_interval_seconds,
            capacity=self._config.token_bucket_capacity,
        )

    # -------------------------------------------------
    # Public API
    # -------------------------------------------------

    def execute_phase(
        self,
        session: ProtectionSession,
        phase: EscalationPhase | str,
        *,
        location: LocationSnapshot | None = None,
        now: datetime | None = None,
    ) -> ExecutionResult:
        """
        Execute the side effects of a phase for a session.

        Args:
            session: Session being escalated
            phase: Phase to execute
            location: Location overriding the session's last known one
            now: Current instant

        Returns:
            ExecutionResult with per-recipient outcomes

        Raises:
            ConfigurationError: Email phase with no sender configured
            ProfileNotFoundError: Owner profile missing
            NotificationTemplateError: A notification failed to render
        """
        phase = EscalationPhase(phase)
        if phase == EscalationPhase.EMERGENCY:
            return self.execute_emergency(
                session.user_id,
                session,
                location=location,
                now=now,
            )

        now = now or datetime.now(timezone.utc)
        plan = PHASE_PLANS[phase]

        log.info(
            "executing_escalation_phase",
            session_id=session.session_id,
            user_id=session.user_id,
            phase=phase.value,
        )

        self._require_configuration(plan)
        profile = self._profile_for(session.user_id, plan)

        result = ExecutionResult(
            phase=phase,
            user_id=session.user_id,
            session_id=session.session_id,
            executed_at=now,
        )
        deliveries = self._prepare(
            plan,
            session,
            profile,
            now=now,
            location=location,
            minutes_to_next=time_until_next_phase(session, now),
        )
        self._deliver(deliveries, session, profile, result, now=now)

        log.info(
            "escalation_phase_executed",
            session_id=session.session_id,
            phase=phase.value,
            attempted=result.attempted,
            succeeded=result.succeeded_count,
            failed=result.failed_count,
        )
        return result

    def execute_emergency(
        self,
        user_id: str,
        session: ProtectionSession | None = None,
        *,
        location: LocationSnapshot | None = None,
        now: datetime | None = None,
    ) -> ExecutionResult:
        """
        Broadcast an emergency to the owner, emergency contacts and legal contacts.

        Never consults the phase calculator. When a session is given it
        is force-terminated to emergency after the notifications; a
        failure to do so is logged and does not undo what was sent.

        Raises:
            ConfigurationError: No sender configured
            ProfileNotFoundError: Owner profile missing
            NotificationTemplateError: A notification failed to render
        """
        now = now or datetime.now(timezone.utc)
        plan = PHASE_PLANS[EscalationPhase.EMERGENCY]
        session_id = session.session_id if session else None

        log.warning(
            "executing_emergency_broadcast",
            user_id=user_id,
            session_id=session_id,
            has_location=location is not None,
        )

        self._require_configuration(plan)
        profile = self._profile_for(user_id, plan)

        result = ExecutionResult(
            phase=EscalationPhase.EMERGENCY,
            user_id=user_id,
            session_id=session_id,
            executed_at=now,
        )
        deliveries = self._prepare(plan, session, profile, now=now, location=location)
        self._deliver(deliveries, session, profile, result, now=now)

        if session is not None:
            result.session_terminated = self._force_terminate(session.session_id, now)

        log.warning(
            "emergency_broadcast_completed",
            user_id=user_id,
            session_id=session_id,
            breakdown=result.breakdown(),
            session_terminated=result.session_terminated,
        )
        return result

    # -------------------------------------------------
    # Internals
    # -------------------------------------------------

    def _require_configuration(self, plan: PhasePlan) -> None:
        if plan.uses_email and not self._settings.notifications_configured:
            log.error("notifications_not_configured", phase=plan.phase.value)
            raise ConfigurationError(
                "ses_from_address",
                "Outbound email notifications are disabled",
            )

    def _profile_for(self, user_id: str, plan: PhasePlan) -> UserProfile:
        profile = self._load_profile(user_id)
        if profile is not None:
            return profile
        if plan.requires_profile:
            log.error("profile_not_found", user_id=user_id, phase=plan.phase.value)
            raise ProfileNotFoundError(user_id)
        return UserProfile(user_id=user_id)

    def _recipients(
        self,
        category: RecipientCategory,
        profile: UserProfile,
    ) -> list[tuple[str | None, str, Contact | None]]:
        """(address, name, contact) for a category, in notification order."""
        if category == RecipientCategory.USER:
            return [(profile.email, profile.name, None)]
        contacts = (
            profile.emergency_only()
            if category == RecipientCategory.EMERGENCY_CONTACTS
            else profile.legal_only()
        )
        return [(c.email, c.name, c) for c in contacts]

    def _prepare(
        self,
        plan: PhasePlan,
        session: ProtectionSession | None,
        profile: UserProfile,
        *,
        now: datetime,
        location: LocationSnapshot | None,
        minutes_to_next: int | None = None,
    ) -> list[_PreparedDelivery]:
        """Render every notification of the plan; raises before anything is sent."""
        deliveries: list[_PreparedDelivery] = []

        for step in plan.steps:
            for address, name, contact in self._recipients(step.category, profile):
                if step.channel == "in_app":
                    address = profile.user_id
                elif not address:
                    log.warning(
                        "recipient_without_email_skipped",
                        user_id=profile.user_id,
                        category=step.category.value,
                        name=name,
                    )
                    continue

                context = build_template_context(
                    session,
                    profile,
                    now=now,
                    recipient=contact,
                    location=location,
                    minutes_to_next=minutes_to_next,
                )
                deliveries.append(
                    _PreparedDelivery(
                        step=step,
                        recipient=address,
                        name=name,
                        rendered=render_notification(step.notification_type, context),
                    )
                )

        return deliveries

    def _deliver(
        self,
        deliveries: list[_PreparedDelivery],
        session: ProtectionSession | None,
        profile: UserProfile,
        result: ExecutionResult,
        *,
        now: datetime,
    ) -> None:
        """Send prepared notifications in order, pacing external sends."""
        pacer = self._pacer_factory()

        for delivery in deliveries:
            if delivery.step.channel == "in_app":
                result.results.append(
                    self._deliver_in_app(delivery, session, profile, now=now)
                )
                continue

            pacer.wait()
            result.results.append(self._deliver_email(delivery, session))

    def _deliver_in_app(
        self,
        delivery: _PreparedDelivery,
        session: ProtectionSession | None,
        profile: UserProfile,
        *,
        now: datetime,
    ) -> RecipientResult:
        notification = InAppNotification(
            user_id=profile.user_id,
            notification_type=delivery.step.notification_type.value,
            title=delivery.rendered.subject,
            message=delivery.rendered.body_text,
            priority="high",
            session_id=session.session_id if session else None,
            action_url=f"{self._settings.app_url.rstrip('/')}/home",
            created_at=now,
        )
        try:
            self._save_notification(notification)
        except DynamoDBError as e:
            log.warning(
                "in_app_notification_failed",
                user_id=profile.user_id,
                session_id=notification.session_id,
                error=str(e),
            )
            return RecipientResult(
                category=delivery.step.category,
                recipient=delivery.recipient,
                name=delivery.name,
                channel="in_app",
                success=False,
                error=str(e),
            )

        return RecipientResult(
            category=delivery.step.category,
            recipient=delivery.recipient,
            name=delivery.name,
            channel="in_app",
            success=True,
        )

    def _deliver_email(
        self,
        delivery: _PreparedDelivery,
        session: ProtectionSession | None,
    ) -> RecipientResult:
        try:
            message_id = self._send_email(
                delivery.recipient,
                delivery.rendered.subject,
                delivery.rendered.body_text,
                max_attempts=self._config.send_retry_attempts,
            )
        except SESError as e:
            error = RecipientDeliveryError(
                delivery.recipient,
                notification_type=delivery.step.notification_type.value,
                error_message=str(e),
            )
            log.error(
                "recipient_delivery_failed",
                session_id=session.session_id if session else None,
                recipient=delivery.recipient,
                category=delivery.step.category.value,
                notification_type=delivery.step.notification_type.value,
                error=str(error),
            )
            return RecipientResult(
                category=delivery.step.category,
                recipient=delivery.recipient,
                name=delivery.name,
                channel="email",
                success=False,
                error=error.message,
            )

        log.info(
            "recipient_notified",
            session_id=session.session_id if session else None,
            recipient=delivery.recipient,
            category=delivery.step.category.value,
            message_id=message_id,
        )
        return RecipientResult(
            category=delivery.step.category,
            recipient=delivery.recipient,
            name=delivery.name,
            channel="email",
            success=True,
            message_id=message_id,
        )

    def _force_terminate(self, session_id: str, now: datetime) -> bool:
        try:
            self._terminate_session(session_id, SessionStatus.EMERGENCY, now=now)
        except SessionNotFoundError as e:
            log.warning("emergency_session_not_found", session_id=session_id, error=str(e))
            return False
        except (InvalidStateTransitionError, ConditionalWriteError) as e:
            log.warning("emergency_session_not_terminated", session_id=session_id, error=str(e))
            return False
        except DynamoDBError as e:
            log.warning("emergency_session_update_failed", session_id=session_id, error=str(e))
            return False
        return True
