"""
Test Escalation Executor

Unit tests for phase execution: recipient partitioning, send order,
pacing, per-recipient failure isolation and precondition errors.
"""

from unittest.mock import MagicMock

import pytest

from escalation.engine.executor import (
    PHASE_PLANS,
    EscalationExecutor,
    ExecutionResult,
    RecipientCategory,
    RecipientResult,
)
from escalation.engine.phases import EscalationPhase
from escalation.engine.templates import NotificationType
from escalation.shared.exceptions import (
    ConfigurationError,
    NotificationTemplateError,
    ProfileNotFoundError,
    SESError,
    SessionNotFoundError,
)
from escalation.shared.state_machine import SessionStatus


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def send_email():
    """Fake SES send returning sequential message IDs."""
    mock = MagicMock()
    mock.side_effect = lambda to, subject, body, **kwargs: f"msg-{to}"
    return mock


@pytest.fixture
def save_notification():
    return MagicMock()


@pytest.fixture
def terminate_session():
    return MagicMock()


@pytest.fixture
def executor_factory(sample_profile, send_email, save_notification, terminate_session, no_wait_pacer_factory):
    """Build executors with fake collaborators."""
    from escalation.shared.config import Settings

    def _build(profile=sample_profile, settings=None, **overrides):
        kwargs = {
            "settings": settings or Settings(ses_from_address="alerts@example.com"),
            "pacer_factory": no_wait_pacer_factory,
            "send_email": send_email,
            "load_profile": MagicMock(return_value=profile),
            "save_notification": save_notification,
            "terminate_session": terminate_session,
        }
        kwargs.update(overrides)
        return EscalationExecutor(**kwargs)

    return _build


# ============================================================================
# Phase Plan Tests
# ============================================================================


class TestPhasePlans:
    """Tests for the phase -> recipients lookup table."""

    def test_every_phase_has_a_plan(self):
        """Every phase, including emergency, is in the table."""
        assert set(PHASE_PLANS) == set(EscalationPhase)

    def test_soft_warning_is_in_app_only(self):
        """The soft warning never leaves the app."""
        plan = PHASE_PLANS[EscalationPhase.SOFT_WARNING]
        assert plan.uses_email is False
        assert plan.requires_profile is False

    def test_only_legal_alert_is_terminal(self):
        """The legal alert is the last threshold phase."""
        terminal = [phase for phase, plan in PHASE_PLANS.items() if plan.terminal]
        assert terminal == [EscalationPhase.LEGAL_ALERT]

    def test_emergency_order(self):
        """Emergency reaches owner, then emergency contacts, then legal contacts."""
        categories = [step.category for step in PHASE_PLANS[EscalationPhase.EMERGENCY].steps]
        assert categories == [
            RecipientCategory.USER,
            RecipientCategory.EMERGENCY_CONTACTS,
            RecipientCategory.LEGAL_CONTACTS,
        ]
        assert PHASE_PLANS[EscalationPhase.EMERGENCY].ends_session is True


# ============================================================================
# Execution Tests
# ============================================================================


class TestExecutePhase:
    """Tests for EscalationExecutor.execute_phase."""

    def test_soft_warning_saves_in_app_notification(
        self, executor_factory, sample_session, frozen_now, send_email, save_notification
    ):
        """Soft warning writes one in-app notification and sends no email."""
        executor = executor_factory()
        result = executor.execute_phase(sample_session, EscalationPhase.SOFT_WARNING, now=frozen_now)

        assert result.attempted == 1
        assert result.succeeded is True
        send_email.assert_not_called()

        notification = save_notification.call_args.args[0]
        assert notification.user_id == sample_session.user_id
        assert notification.session_id == sample_session.session_id
        assert notification.notification_type == NotificationType.SOFT_WARNING_IN_APP.value
        assert notification.action_url == "https://safety.example.com/home"

    def test_soft_warning_without_profile(self, executor_factory, sample_session, frozen_now):
        """Soft warning does not need the owner profile."""
        executor = executor_factory(profile=None)
        result = executor.execute_phase(sample_session, "soft_warning", now=frozen_now)
        assert result.succeeded_count == 1

    def test_soft_warning_without_email_configuration(
        self, executor_factory, sample_session, frozen_now
    ):
        """In-app reminders work even when email is not configured."""
        from escalation.shared.config import Settings

        executor = executor_factory(settings=Settings(ses_from_address=None))
        result = executor.execute_phase(sample_session, EscalationPhase.SOFT_WARNING, now=frozen_now)
        assert result.succeeded is True

    def test_medium_alert_emails_owner(self, executor_factory, sample_session, frozen_now, send_email):
        """Medium alert sends one email to the owner."""
        executor = executor_factory()
        result = executor.execute_phase(sample_session, EscalationPhase.MEDIUM_ALERT, now=frozen_now)

        assert result.attempted == 1
        assert result.for_category(RecipientCategory.USER)[0].recipient == "alex@example.com"
        to, subject, _body = send_email.call_args.args
        assert to == "alex@example.com"
        assert subject == "Urgent: Safety Check Overdue"
        assert send_email.call_args.kwargs["max_attempts"] == 3

    def test_critical_alert_reaches_only_emergency_contacts(
        self, executor_factory, sample_session, frozen_now, send_email
    ):
        """Critical alert notifies the two active personal contacts in stored order."""
        executor = executor_factory()
        result = executor.execute_phase(sample_session, EscalationPhase.CRITICAL_ALERT, now=frozen_now)

        assert result.attempted == 2
        assert [call.args[0] for call in send_email.call_args_list] == [
            "jamie@example.com",
            "riley@example.com",
        ]
        assert result.breakdown()["emergency_contacts"] == {"success": 2, "failed": 0}
        assert result.breakdown()["legal_contacts"] == {"success": 0, "failed": 0}

    def test_legal_alert_reaches_only_legal_contacts(
        self, executor_factory, sample_session, frozen_now, send_email
    ):
        """Legal alert notifies exactly the one legal contact."""
        executor = executor_factory()
        result = executor.execute_phase(sample_session, EscalationPhase.LEGAL_ALERT, now=frozen_now)

        assert result.attempted == 1
        assert send_email.call_args.args[0] == "intake@legalaid.example.org"
        assert result.breakdown()["legal_contacts"]["success"] == 1

    def test_pacing_between_sends(
        self, executor_factory, sample_session, frozen_now, fake_sleep
    ):
        """Consecutive sends are spaced by the minimum interval."""
        executor = executor_factory()
        executor.execute_phase(sample_session, EscalationPhase.EMERGENCY, now=frozen_now)

        # owner + 2 emergency + 1 legal: three gaps between four sends
        assert fake_sleep.calls == [pytest.approx(0.6)] * 3

    def test_recipient_failure_does_not_abort(
        self, executor_factory, sample_session, frozen_now, send_email
    ):
        """One recipient failing leaves the others unaffected."""
        def _send(to, subject, body, **kwargs):
            if to == "jamie@example.com":
                raise SESError("send", to, "MessageRejected: address blacklisted")
            return "msg-ok"

        send_email.side_effect = _send
        executor = executor_factory()
        result = executor.execute_phase(sample_session, EscalationPhase.CRITICAL_ALERT, now=frozen_now)

        assert result.attempted == 2
        assert result.succeeded_count == 1
        assert result.failed_count == 1
        assert result.all_failed is False

        failed = [r for r in result.results if not r.success][0]
        assert failed.recipient == "jamie@example.com"
        assert "blacklisted" in failed.error

    def test_all_recipients_failing(self, executor_factory, sample_session, frozen_now, send_email):
        """all_failed is set when nobody was reached."""
        send_email.side_effect = SESError("send", None, "Throttling")
        executor = executor_factory()
        result = executor.execute_phase(sample_session, EscalationPhase.CRITICAL_ALERT, now=frozen_now)

        assert result.all_failed is True
        assert result.breakdown()["emergency_contacts"] == {"success": 0, "failed": 2}

    def test_contacts_without_email_are_skipped(
        self, executor_factory, sample_profile, sample_session, frozen_now, send_email
    ):
        """Contacts without an address are skipped, not failed."""
        from escalation.shared.models.profile import Contact

        profile = sample_profile.model_copy(
            update={
                "emergency_contacts": [
                    Contact(contact_id="p", name="Phone Only", phone="+15550199"),
                    *sample_profile.emergency_contacts,
                ]
            }
        )
        executor = executor_factory(profile=profile)
        result = executor.execute_phase(sample_session, EscalationPhase.CRITICAL_ALERT, now=frozen_now)

        assert result.attempted == 2
        assert send_email.call_count == 2

    def test_profile_missing_raises(self, executor_factory, sample_session, frozen_now, send_email):
        """A missing profile is a precondition violation."""
        executor = executor_factory(profile=None)

        with pytest.raises(ProfileNotFoundError) as exc_info:
            executor.execute_phase(sample_session, EscalationPhase.CRITICAL_ALERT, now=frozen_now)

        assert exc_info.value.user_id == sample_session.user_id
        send_email.assert_not_called()

    def test_missing_configuration_raises(self, executor_factory, sample_session, frozen_now, send_email):
        """Email phases refuse to run without a sender."""
        from escalation.shared.config import Settings

        executor = executor_factory(settings=Settings(ses_from_address=None))

        with pytest.raises(ConfigurationError) as exc_info:
            executor.execute_phase(sample_session, EscalationPhase.MEDIUM_ALERT, now=frozen_now)

        assert exc_info.value.setting == "ses_from_address"
        send_email.assert_not_called()

    def test_template_failure_aborts_before_sending(
        self, executor_factory, sample_session, frozen_now, send_email, monkeypatch
    ):
        """Rendering happens before any send; a failure contacts nobody."""
        from escalation.engine import executor as executor_module

        calls = {"count": 0}
        real_render = executor_module.render_notification

        def _render(notification_type, context):
            calls["count"] += 1
            if calls["count"] == 2:
                raise NotificationTemplateError(str(notification_type), "boom")
            return real_render(notification_type, context)

        monkeypatch.setattr(executor_module, "render_notification", _render)
        executor = executor_factory()

        with pytest.raises(NotificationTemplateError):
            executor.execute_phase(sample_session, EscalationPhase.CRITICAL_ALERT, now=frozen_now)

        send_email.assert_not_called()


class TestExecuteEmergency:
    """Tests for EscalationExecutor.execute_emergency."""

    def test_notifies_owner_and_all_contacts_in_order(
        self, executor_factory, sample_session, frozen_now, send_email, terminate_session
    ):
        """Owner, then two emergency contacts, then the legal contact."""
        executor = executor_factory()
        result = executor.execute_emergency(sample_session.user_id, sample_session, now=frozen_now)

        assert result.attempted == 4
        assert [call.args[0] for call in send_email.call_args_list] == [
            "alex@example.com",
            "jamie@example.com",
            "riley@example.com",
            "intake@legalaid.example.org",
        ]
        assert result.breakdown() == {
            "user": {"success": 1, "failed": 0},
            "emergency_contacts": {"success": 2, "failed": 0},
            "legal_contacts": {"success": 1, "failed": 0},
        }

        terminate_session.assert_called_once_with(
            sample_session.session_id,
            SessionStatus.EMERGENCY,
            now=frozen_now,
        )
        assert result.session_terminated is True

    def test_execute_phase_delegates_emergency(
        self, executor_factory, sample_session, frozen_now, send_email
    ):
        """Executing the emergency phase bypasses phase logic."""
        executor = executor_factory()
        result = executor.execute_phase(sample_session, EscalationPhase.EMERGENCY, now=frozen_now)

        assert result.phase == EscalationPhase.EMERGENCY
        assert send_email.call_count == 4

    def test_without_session(self, executor_factory, frozen_now, terminate_session, user_id):
        """No session means nothing is terminated."""
        executor = executor_factory()
        result = executor.execute_emergency(user_id, None, now=frozen_now)

        assert result.attempted == 4
        assert result.session_id is None
        assert result.session_terminated is None
        terminate_session.assert_not_called()

    def test_termination_failure_is_not_fatal(
        self, executor_factory, sample_session, frozen_now, terminate_session
    ):
        """Notifications stand even if the session cannot be terminated."""
        terminate_session.side_effect = SessionNotFoundError(sample_session.session_id)
        executor = executor_factory()
        result = executor.execute_emergency(sample_session.user_id, sample_session, now=frozen_now)

        assert result.succeeded_count == 4
        assert result.session_terminated is False

    def test_location_override_used(
        self, executor_factory, sample_session, frozen_now, send_email
    ):
        """The supplied location appears in the notifications."""
        from escalation.shared.models.dynamo import LocationSnapshot

        executor = executor_factory()
        executor.execute_emergency(
            sample_session.user_id,
            sample_session,
            location=LocationSnapshot(lat=10.0, lng=20.0, address="Pier 39"),
            now=frozen_now,
        )

        body = send_email.call_args_list[1].args[2]
        assert "Pier 39 (10.0000, 20.0000)" in body

    def test_profile_missing_raises(self, executor_factory, frozen_now, user_id):
        """Emergency broadcast requires the profile."""
        executor = executor_factory(profile=None)
        with pytest.raises(ProfileNotFoundError):
            executor.execute_emergency(user_id, None, now=frozen_now)


class TestExecutionResult:
    """Tests for ExecutionResult."""

    def test_to_dict(self, frozen_now):
        """Serialized result carries counts, breakdown and recipients."""
        result = ExecutionResult(
            phase=EscalationPhase.CRITICAL_ALERT,
            user_id="u-1",
            session_id="s-1",
            executed_at=frozen_now,
            results=[
                RecipientResult(
                    category=RecipientCategory.EMERGENCY_CONTACTS,
                    recipient="a@example.com",
                    name="A",
                    channel="email",
                    success=True,
                    message_id="m-1",
                ),
                RecipientResult(
                    category=RecipientCategory.EMERGENCY_CONTACTS,
                    recipient="b@example.com",
                    name="B",
                    channel="email",
                    success=False,
                    error="rejected",
                ),
            ],
        )
        data = result.to_dict()

        assert data["phase"] == "critical_alert"
        assert data["attempted"] == 2
        assert data["succeeded"] == 1
        assert data["failed"] == 1
        assert data["breakdown"]["emergency_contacts"] == {"success": 1, "failed": 1}
        assert data["recipients"][0]["message_id"] == "m-1"
        assert data["recipients"][1]["error"] == "rejected"
        assert "session_terminated" not in data

    def test_empty_result_is_not_all_failed(self):
        """No recipients is not a delivery failure."""
        result = ExecutionResult(phase=EscalationPhase.LEGAL_ALERT, user_id="u")
        assert result.all_failed is False
        assert result.succeeded is True
