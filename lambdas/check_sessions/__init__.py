"""
CheckSessions Lambda

Periodic Lambda triggered by an EventBridge Scheduled Rule to escalate
overdue protection sessions.

Components:
- handler: Lambda entry point for the scheduled (or HTTP cron) trigger

Flow:
1. Triggered every few minutes
2. Query GSI1 for active sessions
3. Compute each session's escalation phase
4. Execute phases not yet escalated (deduplicated per session and phase)
5. Return summary of escalations performed
"""

from lambdas.check_sessions.handler import lambda_handler

__all__ = ["lambda_handler"]
