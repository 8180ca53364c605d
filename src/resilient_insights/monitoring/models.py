"""Metric stream records and failure detection models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from resilient_insights.enums import (
    CircuitState,
    FailurePattern,
    FailureStatus,
    Severity,
)

RecommendationPriority = Literal["immediate", "high", "medium", "low"]


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Metric streams
# ---------------------------------------------------------------------------


class _MetricRecord(BaseModel):
    service: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class ErrorMetric(_MetricRecord):
    """Errors counted for one service over one collection window."""

    error_count: int = Field(ge=0)
    error_type: str | None = None


class HealthCheckResult(_MetricRecord):
    service_type: str = "internal"
    status: Literal["healthy", "degraded", "unhealthy"]
    message: str = ""


class LatencySample(_MetricRecord):
    latency_ms: float = Field(ge=0.0)


class CircuitBreakerEvent(_MetricRecord):
    """A breaker state change as recorded by the metrics pipeline."""

    state: CircuitState
    failure_count: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Detections
# ---------------------------------------------------------------------------


class TimelineEvent(BaseModel):
    timestamp: datetime
    event: str
    service: str


class Recommendation(BaseModel):
    action: str
    priority: RecommendationPriority
    estimated_impact: str


class RootCauseAnalysis(BaseModel):
    primary_cause: str
    contributing_factors: list[str] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)


class FailureDetection(BaseModel):
    """One detected systemic failure pattern and its lifecycle."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    pattern: FailurePattern
    severity: Severity
    confidence: float = Field(ge=0.0, le=1.0)
    affected_services: list[str] = Field(default_factory=list)
    correlated_failures: list[str] = Field(default_factory=list)
    root_cause_analysis: RootCauseAnalysis
    recommendations: list[Recommendation] = Field(default_factory=list)
    status: FailureStatus = FailureStatus.ACTIVE
    detected_at: datetime = Field(default_factory=_utcnow)
    investigation_started_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution: str | None = None
    resolution_notes: str | None = None


class FailureAlert(BaseModel):
    """Notification emitted when a new failure detection is stored."""

    failure_id: str
    pattern: FailurePattern
    severity: Severity
    affected_services: list[str]
    message: str
    triggered_at: datetime = Field(default_factory=_utcnow)


class DetectionRun(BaseModel):
    """Summary of one ``detect_failure_patterns`` invocation."""

    ran_at: datetime
    window_minutes: float
    detections: list[FailureDetection] = Field(default_factory=list)
    suppressed: int = 0
    auto_resolved: list[str] = Field(default_factory=list)
    failed_detectors: list[FailurePattern] = Field(default_factory=list)
