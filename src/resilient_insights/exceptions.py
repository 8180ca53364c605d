"""Centralized exception hierarchy for the resilient-insights package.

All domain-specific exceptions inherit from ``ResilientInsightsError`` so
callers can catch the entire family with a single ``except`` clause.
"""

from __future__ import annotations

from resilient_insights.enums import ErrorKind


class ResilientInsightsError(Exception):
    """Base exception for all resilient-insights errors."""


# ---------------------------------------------------------------------------
# Upstream AI service errors
# ---------------------------------------------------------------------------


class UpstreamError(ResilientInsightsError):
    """Base exception for failures of the upstream AI analysis service.

    Carries the classified :class:`ErrorKind` so retry and fallback routing
    do not have to re-parse the message.
    """

    default_kind: ErrorKind = ErrorKind.SERVICE_ERROR

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.kind = kind or self.default_kind


class TransientError(UpstreamError):
    """Raised for network, timeout and rate-limit failures."""

    default_kind = ErrorKind.NETWORK


class PermanentError(UpstreamError):
    """Raised for validation and authentication failures; never retried."""

    default_kind = ErrorKind.VALIDATION


class ServiceError(UpstreamError):
    """Raised for upstream 5xx-equivalent failures."""

    default_kind = ErrorKind.SERVICE_ERROR


# ---------------------------------------------------------------------------
# Circuit breaker errors
# ---------------------------------------------------------------------------


class CircuitOpenError(ResilientInsightsError):
    """Raised by callers that treat an open circuit as an error."""

    def __init__(self, service: str) -> None:
        super().__init__(f"Circuit breaker for '{service}' is open.")
        self.service = service


class StaleRecordError(ResilientInsightsError):
    """Raised when a compare-and-write finds the record changed underneath."""


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class ConfigurationError(ResilientInsightsError):
    """Raised when a component is constructed with invalid collaborators."""


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------


class FailureNotFoundError(ResilientInsightsError):
    """Raised when a failure detection id does not exist."""


class FallbackRecordNotFoundError(ResilientInsightsError):
    """Raised when a stored fallback result id does not exist."""
