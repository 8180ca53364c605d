"""Unit tests for resilient_insights.monitoring.detectors - the five pure detectors."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from resilient_insights.config import FailureDetectionSettings
from resilient_insights.enums import CircuitState, FailurePattern, Severity
from resilient_insights.monitoring import (
    CircuitBreakerEvent,
    ErrorMetric,
    HealthCheckResult,
    LatencySample,
    MetricsSnapshot,
    detect_cascade_failures,
    detect_dependency_failures,
    detect_error_spikes,
    detect_performance_degradation,
    detect_resource_exhaustion,
    merge_findings,
)

NOW = datetime(2026, 3, 1, 12, 3, tzinfo=UTC)
SETTINGS = FailureDetectionSettings()


def ago(minutes: float) -> datetime:
    return NOW - timedelta(minutes=minutes)


def errors(service: str, *points: tuple[float, int], error_type: str | None = None):
    return [
        ErrorMetric(
            service=service, timestamp=ago(minutes), error_count=count, error_type=error_type
        )
        for minutes, count in points
    ]


def latencies(service: str, *values: float) -> list[LatencySample]:
    count = len(values)
    return [
        LatencySample(service=service, timestamp=ago(count - i), latency_ms=value)
        for i, value in enumerate(values)
    ]


# ---- Error spikes -------------------------------------------------------------


class TestErrorSpikes:
    """Recent error rate against the service's own baseline."""

    def test_fivefold_spike_is_high(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=errors("api", (25, 2), (20, 2), (5, 10), (2, 10))
        )
        [finding] = detect_error_spikes(snapshot, NOW, SETTINGS)
        assert finding.pattern is FailurePattern.ERROR_SPIKE
        assert finding.severity is Severity.HIGH
        assert finding.confidence == pytest.approx(0.85)
        assert finding.affected_services == ["api"]
        assert finding.root_cause_analysis.contributing_factors[0] == (
            "Error rate increased 5.0x from baseline"
        )
        assert len(finding.root_cause_analysis.timeline) == 2

    def test_tenfold_spike_is_critical(self) -> None:
        snapshot = MetricsSnapshot(error_metrics=errors("api", (20, 1), (3, 10)))
        [finding] = detect_error_spikes(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.CRITICAL
        assert finding.recommendations[0].priority == "immediate"

    def test_zero_baseline_uses_recent_record_count(self) -> None:
        three = MetricsSnapshot(
            error_metrics=errors("api", (20, 0), (8, 5), (5, 5), (2, 5))
        )
        [finding] = detect_error_spikes(three, NOW, SETTINGS)
        assert finding.severity is Severity.MEDIUM

        two = MetricsSnapshot(error_metrics=errors("api", (20, 0), (5, 50), (2, 50)))
        assert detect_error_spikes(two, NOW, SETTINGS) == []

    def test_small_absolute_counts_ignored(self) -> None:
        snapshot = MetricsSnapshot(error_metrics=errors("api", (20, 0), (8, 1), (5, 1), (2, 1)))
        assert detect_error_spikes(snapshot, NOW, SETTINGS) == []

    def test_needs_baseline_and_recent(self) -> None:
        snapshot = MetricsSnapshot(error_metrics=errors("api", (5, 50), (2, 50)))
        assert detect_error_spikes(snapshot, NOW, SETTINGS) == []

    def test_malformed_record_raises(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=[{"service": "api", "timestamp": "yesterday", "error_count": 1}]
        )
        with pytest.raises(ValidationError):
            detect_error_spikes(snapshot, NOW, SETTINGS)

    def test_unavailable_stream_raises(self) -> None:
        snapshot = MetricsSnapshot(error_metrics=ConnectionError("metrics db down"))
        with pytest.raises(ConnectionError):
            detect_error_spikes(snapshot, NOW, SETTINGS)


# ---- Performance degradation --------------------------------------------------


class TestPerformanceDegradation:
    """Latest three samples against the earlier ones."""

    def test_relative_slowdown(self) -> None:
        snapshot = MetricsSnapshot(
            latency_samples=latencies("api", 1000, 1000, 12_000, 12_000, 12_000),
            health_checks=[
                HealthCheckResult(
                    service="api", timestamp=ago(1), status="degraded", message="slow db"
                )
            ],
        )
        [finding] = detect_performance_degradation(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.CRITICAL
        assert finding.correlated_failures == ["health_check_api"]
        assert "Health check issues: slow db" in (
            finding.root_cause_analysis.contributing_factors
        )

    def test_absolute_ceiling(self) -> None:
        snapshot = MetricsSnapshot(
            latency_samples=latencies("api", *([35_000.0] * 5)),
        )
        [finding] = detect_performance_degradation(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.HIGH

    def test_fast_service_ignored(self) -> None:
        snapshot = MetricsSnapshot(
            latency_samples=latencies("api", 100, 100, 400, 400, 400),
        )
        assert detect_performance_degradation(snapshot, NOW, SETTINGS) == []

    def test_too_few_samples(self) -> None:
        snapshot = MetricsSnapshot(latency_samples=latencies("api", 100, 90_000, 90_000))
        assert detect_performance_degradation(snapshot, NOW, SETTINGS) == []

    def test_malformed_health_checks_skipped(self) -> None:
        snapshot = MetricsSnapshot(
            latency_samples=latencies("api", 1000, 1000, 12_000, 12_000, 12_000),
            health_checks=[{"service": "api", "timestamp": NOW, "status": "on fire"}],
        )
        [finding] = detect_performance_degradation(snapshot, NOW, SETTINGS)
        assert finding.correlated_failures == []


# ---- Cascade ------------------------------------------------------------------


class TestCascadeFailures:
    """Several services failing in the same bucket."""

    def test_three_services_in_one_bucket(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=[
                *errors("auth", (2, 3), error_type="db"),
                *errors("journal", (1, 4), error_type="db"),
            ],
            circuit_breaker_events=[
                CircuitBreakerEvent(
                    service="ai_analysis", timestamp=ago(0), state=CircuitState.OPEN
                )
            ],
        )
        [finding] = detect_cascade_failures(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.MEDIUM
        assert finding.affected_services == ["ai_analysis", "auth", "journal"]
        assert finding.confidence == pytest.approx(0.9)
        assert "circuit_breaker_ai_analysis" in finding.correlated_failures
        timeline = finding.root_cause_analysis.timeline
        assert timeline == sorted(timeline, key=lambda e: e.timestamp)

    def test_different_buckets_do_not_cascade(self) -> None:
        # 11:58 and 11:59 fall in one bucket, 12:01 in the next.
        snapshot = MetricsSnapshot(
            error_metrics=[
                *errors("auth", (5, 3)),
                *errors("journal", (4, 3)),
                *errors("search", (2, 3)),
            ]
        )
        assert detect_cascade_failures(snapshot, NOW, SETTINGS) == []

    def test_closed_breakers_ignored(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=[*errors("auth", (2, 3)), *errors("journal", (1, 4))],
            circuit_breaker_events=[
                CircuitBreakerEvent(
                    service="ai_analysis", timestamp=ago(0), state=CircuitState.CLOSED
                )
            ],
        )
        assert detect_cascade_failures(snapshot, NOW, SETTINGS) == []


# ---- Resource exhaustion ------------------------------------------------------


class TestResourceExhaustion:
    """Resource-tagged errors or sustained very slow responses."""

    def test_many_resource_errors_are_high(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=errors("worker", (3, 12), error_type="memory_pressure")
        )
        [finding] = detect_resource_exhaustion(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.HIGH
        assert finding.confidence == 0.7
        assert finding.correlated_failures == ["error_memory_pressure"]

    def test_few_resource_errors_are_low(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=errors("worker", (3, 2), error_type="Connection Timeout")
        )
        [finding] = detect_resource_exhaustion(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.LOW

    def test_errors_and_slow_responses_raise_confidence(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=errors("worker", (3, 2), error_type="capacity"),
            latency_samples=latencies("worker", 25_000, 25_000, 25_000),
        )
        [finding] = detect_resource_exhaustion(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.HIGH
        assert finding.confidence == 0.9

    def test_untagged_errors_ignored(self) -> None:
        snapshot = MetricsSnapshot(error_metrics=errors("worker", (3, 50), error_type="db"))
        assert detect_resource_exhaustion(snapshot, NOW, SETTINGS) == []


# ---- Dependency failures ------------------------------------------------------


class TestDependencyFailures:
    """External dependencies with failing health checks."""

    def test_unhealthy_dependency_with_related_errors(self) -> None:
        snapshot = MetricsSnapshot(
            health_checks=[
                HealthCheckResult(
                    service="openai",
                    service_type="external_dependency",
                    timestamp=ago(2),
                    status="unhealthy",
                    message="503 from upstream",
                )
            ],
            error_metrics=errors("journal", (1, 7), error_type="openai_timeout"),
        )
        [finding] = detect_dependency_failures(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.HIGH
        assert finding.confidence == 0.85
        assert finding.affected_services == ["openai", "journal"]
        assert finding.root_cause_analysis.primary_cause == (
            "External dependency failure: openai"
        )

    def test_single_degraded_check_is_low(self) -> None:
        snapshot = MetricsSnapshot(
            health_checks=[
                HealthCheckResult(
                    service="stripe",
                    service_type="external_dependency",
                    timestamp=ago(2),
                    status="degraded",
                )
            ]
        )
        [finding] = detect_dependency_failures(snapshot, NOW, SETTINGS)
        assert finding.severity is Severity.LOW
        assert finding.confidence == 0.65

    def test_internal_services_ignored(self) -> None:
        snapshot = MetricsSnapshot(
            health_checks=[
                HealthCheckResult(service="api", timestamp=ago(2), status="unhealthy")
            ]
        )
        assert detect_dependency_failures(snapshot, NOW, SETTINGS) == []


# ---- Merging ------------------------------------------------------------------


class TestMergeFindings:
    """Same-pattern findings fold into one detection."""

    def test_merge(self) -> None:
        snapshot = MetricsSnapshot(
            error_metrics=[
                *errors("api", (25, 2), (5, 10), (2, 10)),
                *errors("auth", (25, 1), (5, 10), (2, 10)),
            ]
        )
        findings = detect_error_spikes(snapshot, NOW, SETTINGS)
        assert len(findings) == 2

        merged = merge_findings(findings)
        assert merged.affected_services == ["api", "auth"]
        assert merged.severity is Severity.CRITICAL
        assert merged.confidence == max(f.confidence for f in findings)
        assert merged.root_cause_analysis.primary_cause == (
            "Error spike detected in 2 services: api, auth"
        )
        assert len({r.action for r in merged.recommendations}) == len(
            merged.recommendations
        )

    def test_single_finding_returned_unchanged(self) -> None:
        snapshot = MetricsSnapshot(error_metrics=errors("api", (25, 2), (5, 10), (2, 10)))
        [finding] = detect_error_spikes(snapshot, NOW, SETTINGS)
        assert merge_findings([finding]) is finding
