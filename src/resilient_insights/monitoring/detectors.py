"""The five failure-pattern detectors.

Each detector is a pure function of a :class:`MetricsSnapshot`, the
current time and the detection settings. Records arrive unvalidated and
each detector validates the streams it reads itself, so a malformed record
(or a stream that failed to load) only takes down the detectors that
depend on it.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from resilient_insights.config import FailureDetectionSettings
from resilient_insights.enums import SEVERITY_RANK, CircuitState, FailurePattern, Severity
from resilient_insights.monitoring.models import (
    CircuitBreakerEvent,
    ErrorMetric,
    FailureDetection,
    HealthCheckResult,
    LatencySample,
    Recommendation,
    RootCauseAnalysis,
    TimelineEvent,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)
Stream = Sequence[Any] | BaseException

_RESOURCE_MARKERS = ("memory", "timeout", "capacity")
_DEPENDENCY_MARKERS = ("external", "api")
_TIMELINE_LIMIT = 5


@dataclass(slots=True)
class MetricsSnapshot:
    """Raw metric streams read for one detection run.

    A stream that failed to load holds the exception instead of records.
    """

    error_metrics: Stream = field(default_factory=list)
    health_checks: Stream = field(default_factory=list)
    latency_samples: Stream = field(default_factory=list)
    circuit_breaker_events: Stream = field(default_factory=list)


Detector = Callable[
    [MetricsSnapshot, datetime, FailureDetectionSettings], list[FailureDetection]
]


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------


def _strict(model: type[M], stream: Stream) -> list[M]:
    """Validate every record; any malformed record raises."""
    if isinstance(stream, BaseException):
        raise stream
    return [r if isinstance(r, model) else model.model_validate(r) for r in stream]


def _tolerant(model: type[M], stream: Stream) -> list[M]:
    """Validate records, skipping malformed ones."""
    if isinstance(stream, BaseException):
        logger.warning("metric_stream_unavailable", model=model.__name__)
        return []
    records: list[M] = []
    for raw in stream:
        try:
            records.append(raw if isinstance(raw, model) else model.model_validate(raw))
        except ValidationError:
            logger.warning("malformed_metric_record_skipped", model=model.__name__)
    return records


def _group_by_service(records: Iterable[M]) -> dict[str, list[M]]:
    grouped: dict[str, list[M]] = defaultdict(list)
    for record in records:
        grouped[record.service].append(record)  # type: ignore[attr-defined]
    return grouped


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _timeline(events: Iterable[TimelineEvent]) -> list[TimelineEvent]:
    return sorted(events, key=lambda e: e.timestamp)


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------


def detect_error_spikes(
    snapshot: MetricsSnapshot, now: datetime, settings: FailureDetectionSettings
) -> list[FailureDetection]:
    """Services whose recent error rate jumped against their own baseline.

    With an error-free baseline the ratio is the number of recent records,
    not a rate; a single burst after a quiet period therefore needs at
    least ``spike_ratio`` recent records to count as a spike.
    """
    errors = _strict(ErrorMetric, snapshot.error_metrics)
    cutoff = now - timedelta(minutes=settings.spike_recent_minutes)
    findings: list[FailureDetection] = []

    for service, metrics in sorted(_group_by_service(errors).items()):
        if len(metrics) < 2:
            continue
        metrics.sort(key=lambda m: m.timestamp)
        recent = [m for m in metrics if m.timestamp >= cutoff]
        baseline = [m for m in metrics if m.timestamp < cutoff]
        if not recent or not baseline:
            continue

        recent_total = sum(m.error_count for m in recent)
        recent_rate = recent_total / len(recent)
        baseline_rate = _mean([m.error_count for m in baseline])
        ratio = recent_rate / baseline_rate if baseline_rate > 0 else float(len(recent))
        if ratio < settings.spike_ratio or recent_total < settings.spike_min_errors:
            continue

        if ratio >= 10:
            severity = Severity.CRITICAL
        elif ratio >= 5:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        critical = severity is Severity.CRITICAL
        findings.append(
            FailureDetection(
                pattern=FailurePattern.ERROR_SPIKE,
                severity=severity,
                confidence=round(min(0.95, 0.6 + ratio / 20), 4),
                affected_services=[service],
                root_cause_analysis=RootCauseAnalysis(
                    primary_cause=f"Error spike detected in {service}",
                    contributing_factors=[
                        f"Error rate increased {ratio:.1f}x from baseline",
                        f"Recent error rate: {recent_rate:.1f} errors/window",
                        f"Baseline error rate: {baseline_rate:.1f} errors/window",
                    ],
                    timeline=[
                        TimelineEvent(
                            timestamp=m.timestamp,
                            event=(
                                f"{m.error_count} errors in "
                                f"{m.error_type or 'various'} category"
                            ),
                            service=service,
                        )
                        for m in recent[-_TIMELINE_LIMIT:]
                    ],
                ),
                recommendations=[
                    Recommendation(
                        action=f"Investigate recent changes to {service}",
                        priority="immediate" if critical else "high",
                        estimated_impact="Reduce error rate and improve service stability",
                    ),
                    Recommendation(
                        action="Check service logs for specific error details",
                        priority="high",
                        estimated_impact="Identify root cause of error increase",
                    ),
                    Recommendation(
                        action="Consider temporary circuit breaker activation",
                        priority="immediate" if critical else "medium",
                        estimated_impact="Prevent cascade failures to dependent services",
                    ),
                ],
                detected_at=now,
            )
        )
    return findings


def detect_performance_degradation(
    snapshot: MetricsSnapshot, now: datetime, settings: FailureDetectionSettings
) -> list[FailureDetection]:
    """Services whose latest latency samples are far slower than before.

    Health checks only enrich the finding, so malformed health records are
    skipped rather than failing the detector.
    """
    samples = _strict(LatencySample, snapshot.latency_samples)
    health = _tolerant(HealthCheckResult, snapshot.health_checks)
    findings: list[FailureDetection] = []

    for service, series in sorted(_group_by_service(samples).items()):
        if len(series) < settings.degradation_min_samples:
            continue
        series.sort(key=lambda s: s.timestamp)
        recent, baseline = series[-3:], series[:-3]
        if len(baseline) < 2:
            continue

        recent_avg = _mean([s.latency_ms for s in recent])
        baseline_avg = _mean([s.latency_ms for s in baseline])
        ratio = recent_avg / baseline_avg if baseline_avg > 0 else 1.0
        relative = (
            ratio >= settings.degradation_ratio
            and recent_avg > settings.degradation_min_latency_ms
        )
        if not relative and recent_avg <= settings.degradation_ceiling_ms:
            continue

        if recent_avg > settings.degradation_critical_ms or ratio >= 5:
            severity = Severity.CRITICAL
        elif recent_avg > settings.degradation_ceiling_ms or ratio >= 3:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM

        health_issues = [
            h for h in health if service in h.service and h.status != "healthy"
        ]
        factors = [
            f"Response time increased {ratio:.1f}x from baseline",
            f"Current average: {recent_avg / 1000:.1f}s",
            f"Baseline average: {baseline_avg / 1000:.1f}s",
        ]
        if health_issues:
            messages = ", ".join(h.message or h.status for h in health_issues)
            factors.append(f"Health check issues: {messages}")

        findings.append(
            FailureDetection(
                pattern=FailurePattern.PERFORMANCE_DEGRADATION,
                severity=severity,
                confidence=round(min(0.9, 0.7 + min(ratio / 10, 0.2)), 4),
                affected_services=[service],
                correlated_failures=[f"health_check_{h.service}" for h in health_issues],
                root_cause_analysis=RootCauseAnalysis(
                    primary_cause=f"Performance degradation detected in {service}",
                    contributing_factors=factors,
                    timeline=[
                        TimelineEvent(
                            timestamp=s.timestamp,
                            event=f"Response time: {s.latency_ms / 1000:.1f}s",
                            service=service,
                        )
                        for s in recent
                    ],
                ),
                recommendations=[
                    Recommendation(
                        action=f"Scale up {service} resources",
                        priority="immediate" if severity is Severity.CRITICAL else "high",
                        estimated_impact="Improve response times and reduce user impact",
                    ),
                    Recommendation(
                        action="Analyze database query performance",
                        priority="high",
                        estimated_impact="Identify and optimize slow database operations",
                    ),
                    Recommendation(
                        action="Check for memory leaks or resource contention",
                        priority="medium",
                        estimated_impact="Prevent progressive performance degradation",
                    ),
                ],
                detected_at=now,
            )
        )
    return findings


def detect_cascade_failures(
    snapshot: MetricsSnapshot, now: datetime, settings: FailureDetectionSettings
) -> list[FailureDetection]:
    """Several services erroring or tripping breakers in the same time bucket."""
    cutoff = now - timedelta(minutes=settings.cascade_lookback_minutes)
    errors = [
        m
        for m in _strict(ErrorMetric, snapshot.error_metrics)
        if m.timestamp >= cutoff and m.error_count > 0
    ]
    opened = [
        e
        for e in _strict(CircuitBreakerEvent, snapshot.circuit_breaker_events)
        if e.timestamp >= cutoff and e.state is CircuitState.OPEN
    ]

    bucket_seconds = settings.cascade_bucket_minutes * 60
    buckets: dict[int, tuple[list[ErrorMetric], list[CircuitBreakerEvent]]] = (
        defaultdict(lambda: ([], []))
    )
    for metric in errors:
        buckets[int(metric.timestamp.timestamp() // bucket_seconds)][0].append(metric)
    for event in opened:
        buckets[int(event.timestamp.timestamp() // bucket_seconds)][1].append(event)

    findings: list[FailureDetection] = []
    for bucket in sorted(buckets):
        bucket_errors, bucket_breakers = buckets[bucket]
        services = sorted(
            {m.service for m in bucket_errors} | {e.service for e in bucket_breakers}
        )
        if len(services) < settings.cascade_min_services:
            continue

        if len(services) >= 5:
            severity = Severity.CRITICAL
        elif len(services) >= 4:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        timeline = [
            TimelineEvent(
                timestamp=m.timestamp,
                event=f"Error spike in {m.service}: {m.error_count} errors",
                service=m.service,
            )
            for m in bucket_errors
        ] + [
            TimelineEvent(
                timestamp=e.timestamp,
                event=f"Circuit breaker opened for {e.service}",
                service=e.service,
            )
            for e in bucket_breakers
        ]
        findings.append(
            FailureDetection(
                pattern=FailurePattern.CASCADE_FAILURE,
                severity=severity,
                confidence=round(min(0.95, 0.6 + len(services) / 10), 4),
                affected_services=services,
                correlated_failures=[
                    *(f"error_{m.service}_{m.error_type}" for m in bucket_errors),
                    *(f"circuit_breaker_{e.service}" for e in bucket_breakers),
                ],
                root_cause_analysis=RootCauseAnalysis(
                    primary_cause="Cascade failure detected across multiple services",
                    contributing_factors=[
                        f"{len(services)} services affected simultaneously",
                        f"{len(bucket_breakers)} circuit breakers opened",
                        f"{len(bucket_errors)} error spikes detected",
                        "Likely caused by dependency failure or resource exhaustion",
                    ],
                    timeline=_timeline(timeline),
                ),
                recommendations=[
                    Recommendation(
                        action="Activate incident response team",
                        priority="immediate",
                        estimated_impact=(
                            "Coordinate response across multiple affected services"
                        ),
                    ),
                    Recommendation(
                        action="Identify and isolate root cause service",
                        priority="immediate",
                        estimated_impact="Stop cascade from spreading to more services",
                    ),
                    Recommendation(
                        action="Enable graceful degradation mode",
                        priority="high",
                        estimated_impact="Maintain partial functionality during recovery",
                    ),
                ],
                detected_at=now,
            )
        )
    return findings


def detect_resource_exhaustion(
    snapshot: MetricsSnapshot, now: datetime, settings: FailureDetectionSettings
) -> list[FailureDetection]:
    """Resource-tagged errors, or sustained very slow responses, per service."""
    cutoff = now - timedelta(minutes=settings.resource_lookback_minutes)
    samples = [
        s for s in _strict(LatencySample, snapshot.latency_samples) if s.timestamp >= cutoff
    ]
    resource_errors = [
        m
        for m in _strict(ErrorMetric, snapshot.error_metrics)
        if m.error_type
        and any(marker in m.error_type.lower() for marker in _RESOURCE_MARKERS)
    ]
    by_service_samples = _group_by_service(samples)
    by_service_errors = _group_by_service(resource_errors)

    findings: list[FailureDetection] = []
    for service in sorted(set(by_service_samples) | set(by_service_errors)):
        series = sorted(by_service_samples.get(service, []), key=lambda s: s.timestamp)
        service_errors = sorted(
            by_service_errors.get(service, []), key=lambda m: m.timestamp
        )
        slow = series[-3:]
        has_errors = bool(service_errors)
        degraded = len(slow) == 3 and all(
            s.latency_ms > settings.resource_latency_ms for s in slow
        )
        if not has_errors and not degraded:
            continue

        error_total = sum(m.error_count for m in service_errors)
        if error_total > 10 or degraded:
            severity = Severity.HIGH
        elif error_total > 5:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW

        factors: list[str] = []
        if has_errors:
            factors.append(f"{error_total} resource-related errors")
        if degraded:
            factors.append("Severe performance degradation observed")
        factors.append(
            "Likely causes: memory leaks, connection pool exhaustion, or high load"
        )
        timeline = [
            TimelineEvent(
                timestamp=m.timestamp,
                event=f"Resource error: {m.error_type}",
                service=service,
            )
            for m in service_errors[-_TIMELINE_LIMIT:]
        ]
        if degraded:
            timeline.extend(
                TimelineEvent(
                    timestamp=s.timestamp,
                    event=f"Slow response: {s.latency_ms / 1000:.1f}s",
                    service=service,
                )
                for s in slow
            )

        findings.append(
            FailureDetection(
                pattern=FailurePattern.RESOURCE_EXHAUSTION,
                severity=severity,
                confidence=0.9 if has_errors and degraded else 0.7,
                affected_services=[service],
                correlated_failures=[f"error_{m.error_type}" for m in service_errors],
                root_cause_analysis=RootCauseAnalysis(
                    primary_cause=f"Resource exhaustion detected in {service}",
                    contributing_factors=factors,
                    timeline=_timeline(timeline),
                ),
                recommendations=[
                    Recommendation(
                        action=f"Increase resource allocation for {service}",
                        priority="immediate" if severity is Severity.HIGH else "high",
                        estimated_impact="Prevent service outage and improve performance",
                    ),
                    Recommendation(
                        action="Check for memory leaks and optimize resource usage",
                        priority="high",
                        estimated_impact="Long-term stability and resource efficiency",
                    ),
                    Recommendation(
                        action="Implement resource monitoring and alerting",
                        priority="medium",
                        estimated_impact="Early warning for future resource issues",
                    ),
                ],
                detected_at=now,
            )
        )
    return findings


def detect_dependency_failures(
    snapshot: MetricsSnapshot, now: datetime, settings: FailureDetectionSettings
) -> list[FailureDetection]:
    """External dependencies reporting non-healthy health checks."""
    failing = [
        h
        for h in _strict(HealthCheckResult, snapshot.health_checks)
        if h.service_type == "external_dependency" and h.status != "healthy"
    ]
    if not failing:
        return []
    errors = _strict(ErrorMetric, snapshot.error_metrics)

    findings: list[FailureDetection] = []
    for dependency, checks in sorted(_group_by_service(failing).items()):
        markers = (dependency.lower(), *_DEPENDENCY_MARKERS)
        related = sorted(
            (
                m
                for m in errors
                if m.error_type and any(mk in m.error_type.lower() for mk in markers)
            ),
            key=lambda m: m.timestamp,
        )
        if any(h.status == "unhealthy" for h in checks):
            severity = Severity.HIGH
        elif len(checks) > 1:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW

        factors = [f"{len(checks)} health check failures for {dependency}"]
        if related:
            factors.append(f"{len(related)} related API errors")
        factors.append("External service outage or connectivity issues")
        timeline = [
            TimelineEvent(
                timestamp=h.timestamp,
                event=f"{dependency} health check failed: {h.message or h.status}",
                service=dependency,
            )
            for h in checks
        ] + [
            TimelineEvent(
                timestamp=m.timestamp,
                event=f"API error in {m.service}: {m.error_type}",
                service=m.service,
            )
            for m in related[-3:]
        ]

        findings.append(
            FailureDetection(
                pattern=FailurePattern.DEPENDENCY_FAILURE,
                severity=severity,
                confidence=0.85 if related else 0.65,
                affected_services=[
                    dependency,
                    *sorted({m.service for m in related} - {dependency}),
                ],
                correlated_failures=[
                    *(f"health_check_{h.service}" for h in checks),
                    *(f"error_{m.service}_{m.error_type}" for m in related),
                ],
                root_cause_analysis=RootCauseAnalysis(
                    primary_cause=f"External dependency failure: {dependency}",
                    contributing_factors=factors,
                    timeline=_timeline(timeline),
                ),
                recommendations=[
                    Recommendation(
                        action=f"Check {dependency} service status and connectivity",
                        priority="immediate",
                        estimated_impact="Restore external service functionality",
                    ),
                    Recommendation(
                        action="Activate fallback mechanisms for affected services",
                        priority="high",
                        estimated_impact="Maintain partial functionality during outage",
                    ),
                    Recommendation(
                        action="Implement retry logic with exponential backoff",
                        priority="medium",
                        estimated_impact="Improve resilience to temporary outages",
                    ),
                ],
                detected_at=now,
            )
        )
    return findings


DETECTORS: dict[FailurePattern, Detector] = {
    FailurePattern.ERROR_SPIKE: detect_error_spikes,
    FailurePattern.PERFORMANCE_DEGRADATION: detect_performance_degradation,
    FailurePattern.CASCADE_FAILURE: detect_cascade_failures,
    FailurePattern.RESOURCE_EXHAUSTION: detect_resource_exhaustion,
    FailurePattern.DEPENDENCY_FAILURE: detect_dependency_failures,
}


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_findings(findings: Sequence[FailureDetection]) -> FailureDetection:
    """Fold same-pattern findings from one run into a single detection.

    The merged detection takes the highest severity and confidence, the
    union of affected services, and the combined narrative.
    """
    if len(findings) == 1:
        return findings[0]
    first = findings[0]
    severity = max((f.severity for f in findings), key=SEVERITY_RANK.__getitem__)
    services = list(dict.fromkeys(s for f in findings for s in f.affected_services))

    recommendations: dict[str, Recommendation] = {}
    for finding in findings:
        for rec in finding.recommendations:
            recommendations.setdefault(rec.action, rec)

    return FailureDetection(
        pattern=first.pattern,
        severity=severity,
        confidence=max(f.confidence for f in findings),
        affected_services=services,
        correlated_failures=list(
            dict.fromkeys(c for f in findings for c in f.correlated_failures)
        ),
        root_cause_analysis=RootCauseAnalysis(
            primary_cause=(
                f"{first.pattern.value.replace('_', ' ').capitalize()} detected in "
                f"{len(services)} services: {', '.join(services)}"
            ),
            contributing_factors=[
                factor
                for f in findings
                for factor in f.root_cause_analysis.contributing_factors
            ],
            timeline=_timeline(
                event for f in findings for event in f.root_cause_analysis.timeline
            ),
        ),
        recommendations=list(recommendations.values()),
        detected_at=first.detected_at,
    )

