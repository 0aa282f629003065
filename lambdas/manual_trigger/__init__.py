"""
ManualTrigger Lambda

API Gateway Lambda for support/testing escalation checks on a single
session, emergency broadcasts, and the escalation status view.
"""

from lambdas.manual_trigger.handler import lambda_handler

__all__ = ["lambda_handler"]
