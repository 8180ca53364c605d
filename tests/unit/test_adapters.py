"""Unit tests for resilient_insights.adapters - in-memory ports."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from resilient_insights.adapters import (
    AsyncioTaskScheduler,
    InMemoryCircuitBreakerStore,
    InMemoryFailureDetectionStore,
    InMemoryFallbackStore,
    InMemoryMetricsStore,
    LoggingAlertSink,
)
from resilient_insights.breaker.models import CircuitBreakerRecord
from resilient_insights.comparison.models import AIAnalysisResult
from resilient_insights.enums import FailurePattern, FailureStatus, Severity
from resilient_insights.exceptions import StaleRecordError
from resilient_insights.monitoring import (
    ErrorMetric,
    FailureAlert,
    FailureDetection,
    RootCauseAnalysis,
)


def _detection(clock, pattern: FailurePattern = FailurePattern.ERROR_SPIKE) -> FailureDetection:
    return FailureDetection(
        pattern=pattern,
        severity=Severity.HIGH,
        confidence=0.8,
        root_cause_analysis=RootCauseAnalysis(primary_cause="test"),
        detected_at=clock.now,
    )


# ---- Circuit breaker store ----------------------------------------------------


class TestInMemoryCircuitBreakerStore:
    """Compare-and-set semantics."""

    @pytest.mark.asyncio()
    async def test_create_requires_absent_record(self, clock) -> None:
        store = InMemoryCircuitBreakerStore()
        record = CircuitBreakerRecord(service="ai", updated_at=clock.now, version=1)
        await store.compare_and_set(record, None)

        with pytest.raises(StaleRecordError, match="version 1, expected None"):
            await store.compare_and_set(record, None)

    @pytest.mark.asyncio()
    async def test_update_requires_matching_version(self, clock) -> None:
        store = InMemoryCircuitBreakerStore()
        await store.compare_and_set(
            CircuitBreakerRecord(service="ai", updated_at=clock.now, version=1), None
        )
        await store.compare_and_set(
            CircuitBreakerRecord(service="ai", updated_at=clock.now, version=2), 1
        )
        with pytest.raises(StaleRecordError):
            await store.compare_and_set(
                CircuitBreakerRecord(service="ai", updated_at=clock.now, version=3), 1
            )
        stored = await store.get("ai")
        assert stored is not None
        assert stored.version == 2

    @pytest.mark.asyncio()
    async def test_get_returns_copy(self, clock) -> None:
        store = InMemoryCircuitBreakerStore()
        await store.compare_and_set(
            CircuitBreakerRecord(service="ai", updated_at=clock.now, version=1), None
        )
        copy = await store.get("ai")
        assert copy is not None
        copy.failure_count = 99
        stored = await store.get("ai")
        assert stored is not None
        assert stored.failure_count == 0
        assert await store.get("missing") is None


# ---- Failure detection store --------------------------------------------------


class TestInMemoryFailureDetectionStore:
    """Insert-if-absent deduplication."""

    @pytest.mark.asyncio()
    async def test_duplicate_pattern_suppressed(self, clock) -> None:
        store = InMemoryFailureDetectionStore()
        since = clock.now - timedelta(hours=1)
        first = await store.insert_if_absent(_detection(clock), since)
        assert first is not None
        assert await store.insert_if_absent(_detection(clock), since) is None

        other = await store.insert_if_absent(
            _detection(clock, FailurePattern.CASCADE_FAILURE), since
        )
        assert other is not None

    @pytest.mark.asyncio()
    async def test_old_or_resolved_detection_does_not_block(self, clock) -> None:
        store = InMemoryFailureDetectionStore()
        old = await store.insert_if_absent(_detection(clock), clock.now - timedelta(hours=1))
        assert old is not None

        clock.advance(hours=2)
        assert (
            await store.insert_if_absent(_detection(clock), clock.now - timedelta(hours=1))
            is not None
        )

        resolved = _detection(clock, FailurePattern.DEPENDENCY_FAILURE)
        await store.insert_if_absent(resolved, clock.now)
        await store.update(resolved.model_copy(update={"status": FailureStatus.RESOLVED}))
        assert (
            await store.insert_if_absent(
                _detection(clock, FailurePattern.DEPENDENCY_FAILURE), clock.now
            )
            is not None
        )

    @pytest.mark.asyncio()
    async def test_investigating_blocks_and_is_listed(self, clock) -> None:
        store = InMemoryFailureDetectionStore()
        detection = _detection(clock)
        await store.insert_if_absent(detection, clock.now)
        await store.update(
            detection.model_copy(update={"status": FailureStatus.INVESTIGATING})
        )
        assert await store.insert_if_absent(_detection(clock), clock.now) is None
        assert [d.id for d in await store.list_active()] == [detection.id]


# ---- Fallback store -----------------------------------------------------------


class TestInMemoryFallbackStore:
    """Recent AI results per user, newest first."""

    @pytest.mark.asyncio()
    async def test_recent_ai_results(self, clock) -> None:
        store = InMemoryFallbackStore()
        for minutes, user in ((0, "u1"), (5, "u1"), (10, "u2"), (15, "u1")):
            await store.record_ai_result(
                AIAnalysisResult(
                    sentiment_score=0.1,
                    confidence=minutes / 100,
                    user_id=user,
                    created_at=clock.now + timedelta(minutes=minutes),
                )
            )
        recent = await store.recent_ai_results("u1", limit=2)
        assert [r.confidence for r in recent] == [0.15, 0.05]
        assert len(await store.recent_ai_results(None, limit=10)) == 4


# ---- Metrics store ------------------------------------------------------------


class TestInMemoryMetricsStore:
    """Timestamp filtering over models and raw mappings."""

    @pytest.mark.asyncio()
    async def test_since_filters_models_and_mappings(self, clock) -> None:
        store = InMemoryMetricsStore.from_dict(
            {
                "error_metrics": [
                    {"service": "api", "timestamp": "2026-03-01T11:50:00", "error_count": 1},
                    {"service": "api", "timestamp": "2026-03-01T10:00:00Z", "error_count": 1},
                    {"service": "api", "timestamp": "not a time", "error_count": 1},
                ]
            }
        )
        store.add_error(
            ErrorMetric(service="db", timestamp=clock.now - timedelta(hours=3), error_count=4)
        )

        recent = await store.error_metrics(clock.now - timedelta(minutes=30))
        # Naive timestamps count as UTC; unparseable ones are left for the detectors.
        assert [r["timestamp"] for r in recent] == ["2026-03-01T11:50:00", "not a time"]
        assert await store.health_checks(clock.now) == []


# ---- Scheduling and alerting --------------------------------------------------


class TestAsyncioTaskScheduler:
    """Deferred tasks run on the event loop and failures are contained."""

    @pytest.mark.asyncio()
    async def test_runs_task_after_delay(self) -> None:
        scheduler = AsyncioTaskScheduler()
        ran: list[str] = []

        async def _task() -> None:
            ran.append("done")

        async def _failing() -> None:
            msg = "boom"
            raise RuntimeError(msg)

        scheduler.run_after(0, _failing)
        scheduler.run_after(0, _task)
        await asyncio.sleep(0.05)
        await scheduler.drain()
        assert ran == ["done"]

    @pytest.mark.asyncio()
    async def test_cancel_all(self) -> None:
        scheduler = AsyncioTaskScheduler()
        ran: list[str] = []

        async def _task() -> None:
            ran.append("done")

        scheduler.run_after(60, _task)
        scheduler.cancel_all()
        await asyncio.sleep(0)
        assert ran == []


class TestLoggingAlertSink:
    """Alerts become warning log events."""

    @pytest.mark.asyncio()
    async def test_publish_logs(self) -> None:
        alert = FailureAlert(
            failure_id="f-1",
            pattern=FailurePattern.ERROR_SPIKE,
            severity=Severity.HIGH,
            affected_services=["api"],
            message="Automated failure detection: error_spike affecting api",
        )
        with capture_logs() as logs:
            await LoggingAlertSink().publish(alert)
        assert logs[0]["event"] == "failure_alert"
        assert logs[0]["log_level"] == "warning"
        assert logs[0]["pattern"] == "error_spike"
