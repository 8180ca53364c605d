"""Shared enumerations used across the resilience components."""

from __future__ import annotations

from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ErrorKind(StrEnum):
    """Classified kind of an upstream AI call failure."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    SERVICE_ERROR = "service_error"
    AUTHENTICATION = "authentication"


TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT})
PERMANENT_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.AUTHENTICATION})


class Sentiment(StrEnum):
    """Categorical sentiment label."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class Priority(StrEnum):
    """Queue priority for retries and upgrade attempts."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class FallbackTrigger(StrEnum):
    """Why the fallback path was taken."""

    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    RETRY_EXHAUSTED = "retry_exhausted"
    API_UNAVAILABLE = "api_unavailable"
    MANUAL_REQUEST = "manual_request"


class FailurePattern(StrEnum):
    """Systemic failure patterns recognised by the failure detector."""

    ERROR_SPIKE = "error_spike"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    CASCADE_FAILURE = "cascade_failure"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    DEPENDENCY_FAILURE = "dependency_failure"


class Severity(StrEnum):
    """Severity of a detected failure pattern."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class FailureStatus(StrEnum):
    """Lifecycle status of a failure detection."""

    ACTIVE = "active"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"
