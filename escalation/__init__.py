# Check-In Escalation Service
"""
Personal-safety check-in escalation service.

Packages:
- escalation.shared: settings, exceptions, state machine, models, AWS tools
- escalation.engine: phase calculator, executor, deduplicator, scanner
"""
