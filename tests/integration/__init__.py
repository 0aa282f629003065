"""
Integration tests for the escalation service.

These tests use mocked AWS services (moto) to run complete scan and
emergency flows across the engine and the shared tools.
"""
