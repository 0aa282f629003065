# Escalation Engine
"""
Phase calculation and execution for overdue protection sessions.

Control flow: scanner -> phase calculator -> deduplicator -> executor
-> record outcome -> summary.
"""

from escalation.engine.config import EngineConfig, get_engine_config
from escalation.engine.deduplicator import ClaimOutcome, EscalationDeduplicator
from escalation.engine.executor import (
    PHASE_PLANS,
    DeliveryStep,
    EscalationExecutor,
    ExecutionResult,
    PhasePlan,
    RecipientCategory,
    RecipientResult,
)
from escalation.engine.pacing import FixedIntervalPacer, Pacer, TokenBucketPacer
from escalation.engine.phases import (
    EscalationPhase,
    PhaseThresholds,
    calculate_phase,
    get_escalation_status,
    minutes_overdue,
    needs_escalation,
    next_phase,
    time_until_next_phase,
)
from escalation.engine.scanner import (
    OutcomeKind,
    ScanSummary,
    SessionOutcome,
    SessionScanner,
    run_scan,
)
from escalation.engine.trigger import session_status, trigger_emergency, trigger_for_session

__all__ = [
    # Config
    "EngineConfig",
    "get_engine_config",
    # Phases
    "EscalationPhase",
    "PhaseThresholds",
    "calculate_phase",
    "get_escalation_status",
    "minutes_overdue",
    "needs_escalation",
    "next_phase",
    "time_until_next_phase",
    # Pacing
    "Pacer",
    "FixedIntervalPacer",
    "TokenBucketPacer",
    # Executor
    "PHASE_PLANS",
    "DeliveryStep",
    "EscalationExecutor",
    "ExecutionResult",
    "PhasePlan",
    "RecipientCategory",
    "RecipientResult",
    # Deduplicator
    "ClaimOutcome",
    "EscalationDeduplicator",
    # Scanner
    "OutcomeKind",
    "ScanSummary",
    "SessionOutcome",
    "SessionScanner",
    "run_scan",
    # Manual trigger
    "session_status",
    "trigger_emergency",
    "trigger_for_session",
]
