"""Failure-pattern detection over service metric streams."""

from resilient_insights.monitoring.detectors import (
    DETECTORS,
    MetricsSnapshot,
    detect_cascade_failures,
    detect_dependency_failures,
    detect_error_spikes,
    detect_performance_degradation,
    detect_resource_exhaustion,
    merge_findings,
)
from resilient_insights.monitoring.failure_detector import AUTO_RESOLUTION, FailureDetector
from resilient_insights.monitoring.models import (
    CircuitBreakerEvent,
    DetectionRun,
    ErrorMetric,
    FailureAlert,
    FailureDetection,
    HealthCheckResult,
    LatencySample,
    Recommendation,
    RootCauseAnalysis,
    TimelineEvent,
)

__all__ = [
    "AUTO_RESOLUTION",
    "DETECTORS",
    "CircuitBreakerEvent",
    "DetectionRun",
    "ErrorMetric",
    "FailureAlert",
    "FailureDetection",
    "FailureDetector",
    "HealthCheckResult",
    "LatencySample",
    "MetricsSnapshot",
    "Recommendation",
    "RootCauseAnalysis",
    "TimelineEvent",
    "detect_cascade_failures",
    "detect_dependency_failures",
    "detect_error_spikes",
    "detect_performance_degradation",
    "detect_resource_exhaustion",
    "merge_findings",
]
