"""Retry classification exports."""

from resilient_insights.retry.classifier import (
    RetryClassifier,
    create_retry_context,
    retry_recommendation,
)
from resilient_insights.retry.models import CircuitSnapshot, RetryContext, RetryDecision

__all__ = [
    "CircuitSnapshot",
    "RetryClassifier",
    "RetryContext",
    "RetryDecision",
    "create_retry_context",
    "retry_recommendation",
]
