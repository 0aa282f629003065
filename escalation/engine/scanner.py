"""
Session Scanner

Periodic driver: loads every active session, computes its phase and,
when a phase is due and not yet escalated, claims, executes and records
it. Each session is processed independently; any per-session failure is
collected into the summary and the scan moves on.

Flow per session:
1. Phase from the listed copy (skip if none)
2. Consistent re-read and phase recomputation
3. Dedup check (fails open)
4. Atomic claim of (session, phase)
5. Execute phase
6. Record outcome, or release the claim if nobody could be reached
   (best-effort phases are recorded either way)
7. Stamp the session (terminal phase moves it to escalated)

Accepted race: an owner check-in landing between step 2 and step 5 does
not stop that phase's notifications. The session stamp in step 7 is
conditional on the session still being active, so a safely ended
session is never moved back into escalation.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

import structlog

from escalation.engine.config import EngineConfig, get_engine_config
from escalation.engine.deduplicator import ClaimOutcome, EscalationDeduplicator
from escalation.engine.executor import PHASE_PLANS, EscalationExecutor, ExecutionResult
from escalation.engine.phases import THRESHOLD_PHASES, EscalationPhase, calculate_phase
from escalation.shared.exceptions import ConfigurationError, DynamoDBError, SafetyError
from escalation.shared.models.dynamo import ProtectionSession
from escalation.shared.tools.dynamodb import (
    get_active_sessions,
    load_session,
    mark_session_escalated,
)

log = structlog.get_logger()


class OutcomeKind(str, Enum):
    """What happened to one session during a scan."""

    NO_ACTION = "no_action"
    ALREADY_ESCALATED = "already_escalated"
    CLAIMED_ELSEWHERE = "claimed_elsewhere"
    DRY_RUN = "dry_run"
    ESCALATED = "escalated"
    DELIVERY_FAILED = "delivery_failed"
    SERVICE_UNAVAILABLE = "service_unavailable"
    ERROR = "error"

    @property
    def is_error(self) -> bool:
        return self in (
            OutcomeKind.DELIVERY_FAILED,
            OutcomeKind.SERVICE_UNAVAILABLE,
            OutcomeKind.ERROR,
        )


@dataclass
class SessionOutcome:
    """Result of one scan iteration for one session."""

    session_id: str
    kind: OutcomeKind
    phase: EscalationPhase | None = None
    execution: ExecutionResult | None = None
    recorded: bool | None = None
    error: str | None = None

    @property
    def escalated(self) -> bool:
        return self.kind == OutcomeKind.ESCALATED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.session_id,
            "outcome": self.kind.value,
            "phase": self.phase.value if self.phase else None,
        }
        if self.execution is not None:
            data["execution"] = self.execution.to_dict()
        if self.recorded is not None:
            data["recorded"] = self.recorded
        if self.error:
            data["error"] = self.error
        return data


def _empty_phase_counts() -> dict[str, int]:
    return {phase.value: 0 for phase in THRESHOLD_PHASES}


@dataclass
class ScanSummary:
    """Aggregate of one scan."""

    checked: int = 0
    escalated: int = 0
    phases: dict[str, int] = field(default_factory=_empty_phase_counts)
    errors: list[str] = field(default_factory=list)
    deferred: int = 0
    dry_run: bool = False
    service_unavailable: bool = False
    outcomes: list[SessionOutcome] = field(default_factory=list)
    duration_ms: float = 0.0

    def add(self, outcome: SessionOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.escalated and outcome.phase is not None:
            self.escalated += 1
            self.phases[outcome.phase.value] = self.phases.get(outcome.phase.value, 0) + 1
        if outcome.kind == OutcomeKind.SERVICE_UNAVAILABLE:
            self.service_unavailable = True
        if outcome.kind.is_error:
            self.errors.append(f"Session {outcome.session_id}: {outcome.error}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "escalated": self.escalated,
            "phases": dict(self.phases),
            "errors": list(self.errors),
            "deferred": self.deferred,
            "dry_run": self.dry_run,
            "service_unavailable": self.service_unavailable,
            "sessions": [
                o.to_dict() for o in self.outcomes if o.kind != OutcomeKind.NO_ACTION
            ],
            "duration_ms": round(self.duration_ms, 2),
        }


class SessionScanner:
    """Runs the calculate -> dedup -> execute -> record loop over sessions."""

    def __init__(
        self,
        *,
        executor: EscalationExecutor | None = None,
        deduplicator: EscalationDeduplicator | None = None,
        config: EngineConfig | None = None,
        list_sessions: Callable[[], list[ProtectionSession]] = get_active_sessions,
        reload_session: Callable[[str], ProtectionSession | None] = load_session,
        stamp_session: Callable[..., bool] = mark_session_escalated,
        clock: Callable[[], datetime] | None = None,
    ):
        self._config = config or get_engine_config()
        self._executor = executor or EscalationExecutor(config=self._config)
        self._deduplicator = deduplicator or EscalationDeduplicator(
            self._config.claim_lease_seconds
        )
        self._list_sessions = list_sessions
        self._reload_session = reload_session
        self._stamp_session = stamp_session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def process_session(
        self,
        session: ProtectionSession,
        now: datetime,
        *,
        dry_run: bool = False,
    ) -> SessionOutcome:
        """
        Run one scan iteration for a session.

        Expected failures come back as outcomes; only unexpected
        exceptions propagate.
        """
        phase = calculate_phase(session, now)
        if phase is None:
            return SessionOutcome(session.session_id, OutcomeKind.NO_ACTION)

        current = self._fresh_copy(session)
        if current is None:
            log.warning("session_disappeared", session_id=session.session_id)
            return SessionOutcome(session.session_id, OutcomeKind.NO_ACTION)
        session = current

        phase = calculate_phase(session, now)
        if phase is None:
            log.info("escalation_no_longer_due", session_id=session.session_id)
            return SessionOutcome(session.session_id, OutcomeKind.NO_ACTION)

        if self._deduplicator.has_escalated(session.session_id, phase.value, now=now):
            log.debug(
                "session_already_escalated",
                session_id=session.session_id,
                phase=phase.value,
            )
            return SessionOutcome(session.session_id, OutcomeKind.ALREADY_ESCALATED, phase)

        if dry_run:
            log.info("dry_run_would_escalate", session_id=session.session_id, phase=phase.value)
            return SessionOutcome(session.session_id, OutcomeKind.DRY_RUN, phase)

        claim = self._deduplicator.claim(
            session.session_id,
            phase.value,
            user_id=session.user_id,
            now=now,
        )
        if not claim.may_proceed:
            return SessionOutcome(session.session_id, OutcomeKind.CLAIMED_ELSEWHERE, phase)

        log.info(
            "escalating_session",
            session_id=session.session_id,
            user_id=session.user_id,
            phase=phase.value,
            claim=claim.value,
        )

        try:
            execution = self._executor.execute_phase(session, phase, now=now)
        except ConfigurationError as e:
            self._release(session.session_id, phase, claim)
            return SessionOutcome(
                session.session_id,
                OutcomeKind.SERVICE_UNAVAILABLE,
                phase,
                error=str(e),
            )
        except SafetyError as e:
            log.error(
                "session_escalation_failed",
                session_id=session.session_id,
                phase=phase.value,
                error=str(e),
            )
            self._release(session.session_id, phase, claim)
            return SessionOutcome(session.session_id, OutcomeKind.ERROR, phase, error=str(e))

        if execution.all_failed and PHASE_PLANS[phase].best_effort:
            log.warning(
                "best_effort_phase_undelivered",
                session_id=session.session_id,
                phase=phase.value,
                attempted=execution.attempted,
            )
        elif execution.all_failed:
            log.error(
                "escalation_reached_nobody",
                session_id=session.session_id,
                phase=phase.value,
                attempted=execution.attempted,
            )
            self._release(session.session_id, phase, claim)
            return SessionOutcome(
                session.session_id,
                OutcomeKind.DELIVERY_FAILED,
                phase,
                execution=execution,
                error=f"All {execution.attempted} recipient(s) failed for {phase.value}",
            )

        recorded = self._deduplicator.record_escalation(
            session.session_id,
            phase.value,
            execution.to_dict(),
            user_id=session.user_id,
            now=now,
        )
        self._stamp(session, phase, now)

        return SessionOutcome(
            session.session_id,
            OutcomeKind.ESCALATED,
            phase,
            execution=execution,
            recorded=recorded,
        )

    def run_scan(
        self,
        now: datetime | None = None,
        deadline: datetime | None = None,
        *,
        dry_run: bool = False,
    ) -> ScanSummary:
        """
        Scan every active session.

        Args:
            now: Instant phases are computed at (defaults to the clock)
            deadline: Wall-clock instant after which no further session is
                started; untouched sessions are left for the next scan
            dry_run: Compute phases without notifying anyone

        Raises:
            DynamoDBError: If the active sessions cannot be listed
        """
        started = time.time()
        now = now or self._clock()
        summary = ScanSummary(dry_run=dry_run)

        sessions = self._list_sessions()
        summary.checked = len(sessions)

        log.info("scan_started", active_sessions=len(sessions), dry_run=dry_run)

        cutoff = (
            deadline - timedelta(seconds=self._config.deadline_margin_seconds)
            if deadline
            else None
        )

        for index, session in enumerate(sessions):
            if cutoff is not None and self._clock() >= cutoff:
                summary.deferred = len(sessions) - index
                log.warning(
                    "scan_deadline_reached",
                    processed=index,
                    deferred=summary.deferred,
                )
                break

            try:
                outcome = self.process_session(session, now, dry_run=dry_run)
            except Exception as e:
                log.exception("session_processing_failed", session_id=session.session_id)
                outcome = SessionOutcome(session.session_id, OutcomeKind.ERROR, error=str(e))

            summary.add(outcome)

        summary.duration_ms = (time.time() - started) * 1000

        log.info(
            "scan_completed",
            checked=summary.checked,
            escalated=summary.escalated,
            phases=summary.phases,
            errors=len(summary.errors),
            deferred=summary.deferred,
            duration_ms=round(summary.duration_ms, 2),
        )
        return summary

    def _fresh_copy(self, session: ProtectionSession) -> ProtectionSession | None:
        try:
            current = self._reload_session(session.session_id)
        except DynamoDBError as e:
            log.warning("session_reload_failed", session_id=session.session_id, error=str(e))
            return session
        return current

    def _release(self, session_id: str, phase: EscalationPhase, claim: ClaimOutcome) -> None:
        if claim == ClaimOutcome.CLAIMED:
            self._deduplicator.release(session_id, phase.value)

    def _stamp(self, session: ProtectionSession, phase: EscalationPhase, now: datetime) -> None:
        try:
            self._stamp_session(
                session.session_id,
                phase.value,
                terminal=PHASE_PLANS[phase].terminal,
                now=now,
            )
        except DynamoDBError as e:
            log.warning("session_stamp_failed", session_id=session.session_id, error=str(e))


def run_scan(
    now: datetime | None = None,
    deadline: datetime | None = None,
    *,
    dry_run: bool = False,
) -> ScanSummary:
    """Scan all active sessions with the default collaborators."""
    return SessionScanner().run_scan(now, deadline, dry_run=dry_run)
