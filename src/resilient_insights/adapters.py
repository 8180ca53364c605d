"""In-memory implementations of the store, metrics and scheduling ports.

Suitable for tests, the CLI and single-process deployments. Every store
guards its state with an :class:`asyncio.Lock`, so compare-and-write and
insert-if-absent are atomic with respect to other coroutines on the same
event loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError

from resilient_insights.breaker.models import CircuitBreakerRecord
from resilient_insights.comparison.models import AIAnalysisResult, StoredFallback
from resilient_insights.enums import FailureStatus
from resilient_insights.exceptions import StaleRecordError
from resilient_insights.monitoring.models import (
    CircuitBreakerEvent,
    ErrorMetric,
    FailureAlert,
    FailureDetection,
    HealthCheckResult,
    LatencySample,
)
from resilient_insights.ports import Task

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_OPEN_STATUSES = frozenset({FailureStatus.ACTIVE, FailureStatus.INVESTIGATING})


# ---------------------------------------------------------------------------
# Record stores
# ---------------------------------------------------------------------------


class InMemoryCircuitBreakerStore:
    """Breaker records keyed by service, written with compare-and-set."""

    def __init__(self) -> None:
        self._records: dict[str, CircuitBreakerRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, service: str) -> CircuitBreakerRecord | None:
        record = self._records.get(service)
        return record.model_copy(deep=True) if record is not None else None

    async def compare_and_set(
        self, record: CircuitBreakerRecord, expected_version: int | None
    ) -> CircuitBreakerRecord:
        async with self._lock:
            current = self._records.get(record.service)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                msg = (
                    f"Breaker record for '{record.service}' is at version "
                    f"{current_version}, expected {expected_version}."
                )
                raise StaleRecordError(msg)
            self._records[record.service] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    async def list_records(self) -> list[CircuitBreakerRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]


class InMemoryFailureDetectionStore:
    """Failure detections keyed by id."""

    def __init__(self) -> None:
        self._detections: dict[str, FailureDetection] = {}
        self._lock = asyncio.Lock()

    async def insert_if_absent(
        self, detection: FailureDetection, since: datetime
    ) -> FailureDetection | None:
        async with self._lock:
            for existing in self._detections.values():
                if (
                    existing.pattern is detection.pattern
                    and existing.status in _OPEN_STATUSES
                    and existing.detected_at >= since
                ):
                    return None
            self._detections[detection.id] = detection
            return detection

    async def get(self, detection_id: str) -> FailureDetection | None:
        return self._detections.get(detection_id)

    async def update(self, detection: FailureDetection) -> FailureDetection:
        async with self._lock:
            self._detections[detection.id] = detection
            return detection

    async def list_active(self) -> list[FailureDetection]:
        return [d for d in self._detections.values() if d.status in _OPEN_STATUSES]


class InMemoryFallbackStore:
    """Stored fallback results plus a history of AI results per user."""

    def __init__(self) -> None:
        self._fallbacks: dict[str, StoredFallback] = {}
        self._ai_results: list[AIAnalysisResult] = []

    async def save(self, record: StoredFallback) -> StoredFallback:
        self._fallbacks[record.id] = record
        return record

    async def get(self, fallback_id: str) -> StoredFallback | None:
        return self._fallbacks.get(fallback_id)

    async def record_ai_result(self, result: AIAnalysisResult) -> None:
        self._ai_results.append(result)

    async def recent_ai_results(
        self, user_id: str | None, limit: int
    ) -> list[AIAnalysisResult]:
        matching = [r for r in self._ai_results if user_id is None or r.user_id == user_id]
        matching.sort(key=lambda r: r.created_at, reverse=True)
        return matching[:limit]


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class InMemoryMetricsStore:
    """Append-only metric streams readable through the ``MetricsReader`` port.

    Records may be models or plain mappings; mappings are stored as given
    and validated by the detectors that read them.
    """

    def __init__(self) -> None:
        self._errors: list[ErrorMetric | dict[str, Any]] = []
        self._health: list[HealthCheckResult | dict[str, Any]] = []
        self._latency: list[LatencySample | dict[str, Any]] = []
        self._breaker_events: list[CircuitBreakerEvent | dict[str, Any]] = []

    @classmethod
    def from_dict(cls, data: dict[str, Sequence[dict[str, Any]]]) -> InMemoryMetricsStore:
        """Build a store from ``{"error_metrics": [...], "health_checks": [...], ...}``."""
        store = cls()
        store._errors.extend(data.get("error_metrics", []))
        store._health.extend(data.get("health_checks", []))
        store._latency.extend(data.get("latency_samples", []))
        store._breaker_events.extend(data.get("circuit_breaker_events", []))
        return store

    def add_error(self, metric: ErrorMetric | dict[str, Any]) -> None:
        self._errors.append(metric)

    def add_health_check(self, result: HealthCheckResult | dict[str, Any]) -> None:
        self._health.append(result)

    def add_latency(self, sample: LatencySample | dict[str, Any]) -> None:
        self._latency.append(sample)

    def add_breaker_event(self, event: CircuitBreakerEvent | dict[str, Any]) -> None:
        self._breaker_events.append(event)

    async def error_metrics(self, since: datetime) -> list[ErrorMetric | dict[str, Any]]:
        return _since(self._errors, since)

    async def health_checks(
        self, since: datetime
    ) -> list[HealthCheckResult | dict[str, Any]]:
        return _since(self._health, since)

    async def latency_samples(
        self, since: datetime
    ) -> list[LatencySample | dict[str, Any]]:
        return _since(self._latency, since)

    async def circuit_breaker_events(
        self, since: datetime
    ) -> list[CircuitBreakerEvent | dict[str, Any]]:
        return _since(self._breaker_events, since)


_TIMESTAMP: TypeAdapter[datetime] = TypeAdapter(datetime)


def _since(records: list[Any], since: datetime) -> list[Any]:
    return [r for r in records if _is_recent(r, since)]


def _is_recent(record: Any, since: datetime) -> bool:
    if not isinstance(record, dict):
        return record.timestamp >= since
    try:
        timestamp = _TIMESTAMP.validate_python(record.get("timestamp"))
    except ValidationError:
        # Left for the detectors to reject.
        return True
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return timestamp >= since


# ---------------------------------------------------------------------------
# Outbound ports
# ---------------------------------------------------------------------------


class AsyncioTaskScheduler:
    """Runs deferred tasks on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()
        self._handles: list[asyncio.TimerHandle] = []

    def run_after(self, delay_seconds: float, task: Task) -> None:
        loop = asyncio.get_running_loop()
        self._handles.append(loop.call_later(max(0.0, delay_seconds), self._start, task))

    def _start(self, task: Task) -> None:
        running = asyncio.ensure_future(self._guarded(task))
        self._tasks.add(running)
        running.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guarded(task: Task) -> None:
        try:
            await task()
        except Exception:
            logger.exception("scheduled_task_failed")

    async def drain(self) -> None:
        """Wait for every task that has already started."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def cancel_all(self) -> None:
        for handle in self._handles:
            handle.cancel()
        for task in self._tasks:
            task.cancel()
        self._handles.clear()


class RecordingScheduler:
    """Scheduler that only records tasks; the caller runs them explicitly."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[float, Task]] = []

    def run_after(self, delay_seconds: float, task: Task) -> None:
        self.scheduled.append((delay_seconds, task))

    async def run_all(self) -> int:
        """Run and forget every recorded task, returning how many ran."""
        tasks, self.scheduled = self.scheduled, []
        for _, task in tasks:
            await task()
        return len(tasks)


class CollectingAlertSink:
    """Keeps published alerts in memory."""

    def __init__(self) -> None:
        self.alerts: list[FailureAlert] = []

    async def publish(self, alert: FailureAlert) -> None:
        self.alerts.append(alert)


class LoggingAlertSink:
    """Emits every alert as a structured log event."""

    async def publish(self, alert: FailureAlert) -> None:
        logger.warning(
            "failure_alert",
            failure_id=alert.failure_id,
            pattern=alert.pattern.value,
            severity=alert.severity.value,
            affected_services=alert.affected_services,
            message=alert.message,
        )
