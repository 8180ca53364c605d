"""Narrow collaborator interfaces consumed by the resilience core.

Each component receives only the port it needs. In-memory implementations
live in :mod:`resilient_insights.adapters`; production deployments supply
their own backed by whatever record store and scheduler they run on.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from resilient_insights.breaker.models import CircuitBreakerRecord
    from resilient_insights.comparison.models import AIAnalysisResult, StoredFallback
    from resilient_insights.monitoring.models import (
        CircuitBreakerEvent,
        ErrorMetric,
        FailureAlert,
        FailureDetection,
        HealthCheckResult,
        LatencySample,
    )

Clock = Callable[[], datetime]
Task = Callable[[], Awaitable[None]]


def utcnow() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Record stores
# ---------------------------------------------------------------------------


class CircuitBreakerStore(Protocol):
    """Persistence for circuit breaker records, keyed by service."""

    async def get(self, service: str) -> CircuitBreakerRecord | None:
        """Return the record for ``service`` or ``None``."""
        ...

    async def compare_and_set(
        self, record: CircuitBreakerRecord, expected_version: int | None
    ) -> CircuitBreakerRecord:
        """Write ``record`` if the stored version equals ``expected_version``.

        ``expected_version=None`` means the record must not exist yet.

        Raises:
            StaleRecordError: If the stored record changed in the meantime.
        """
        ...

    async def list_records(self) -> list[CircuitBreakerRecord]:
        """Return every breaker record."""
        ...


class FailureDetectionStore(Protocol):
    """Persistence for failure detections."""

    async def insert_if_absent(
        self, detection: FailureDetection, since: datetime
    ) -> FailureDetection | None:
        """Insert unless an active detection of the same pattern exists since ``since``.

        Returns:
            The stored detection, or ``None`` when suppressed as a duplicate.
        """
        ...

    async def get(self, detection_id: str) -> FailureDetection | None: ...

    async def update(self, detection: FailureDetection) -> FailureDetection: ...

    async def list_active(self) -> list[FailureDetection]: ...


class FallbackResultStore(Protocol):
    """Persistence for stored fallback results and recent AI results."""

    async def save(self, record: StoredFallback) -> StoredFallback: ...

    async def get(self, fallback_id: str) -> StoredFallback | None: ...

    async def record_ai_result(self, result: AIAnalysisResult) -> None:
        """Remember a completed AI result for quality prediction."""
        ...

    async def recent_ai_results(
        self, user_id: str | None, limit: int
    ) -> list[AIAnalysisResult]:
        """Return up to ``limit`` most recent AI results, newest first."""
        ...


# ---------------------------------------------------------------------------
# Metric streams
# ---------------------------------------------------------------------------


class MetricsReader(Protocol):
    """Read access to externally collected metric streams.

    Implementations may return model instances or plain mappings; the
    detectors validate records themselves so one malformed record only
    affects the detector that reads it.
    """

    async def error_metrics(
        self, since: datetime
    ) -> Sequence[ErrorMetric | dict[str, Any]]: ...

    async def health_checks(
        self, since: datetime
    ) -> Sequence[HealthCheckResult | dict[str, Any]]: ...

    async def latency_samples(
        self, since: datetime
    ) -> Sequence[LatencySample | dict[str, Any]]: ...

    async def circuit_breaker_events(
        self, since: datetime
    ) -> Sequence[CircuitBreakerEvent | dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# Outbound ports
# ---------------------------------------------------------------------------


class TaskScheduler(Protocol):
    """Deferred-task port owned by the caller."""

    def run_after(self, delay_seconds: float, task: Task) -> None:
        """Run ``task`` once, no earlier than ``delay_seconds`` from now."""
        ...


class AlertSink(Protocol):
    """Destination for failure-pattern alerts."""

    async def publish(self, alert: FailureAlert) -> None: ...


class CostEstimator(Protocol):
    """Estimates the USD cost of re-running a stored fallback through the AI."""

    def estimate(self, record: StoredFallback) -> float: ...


@runtime_checkable
class AIAnalysisClient(Protocol):
    """Client for the upstream AI text-analysis service."""

    async def analyze(
        self, text: str, relationship_context: str | None = None
    ) -> AIAnalysisResult:
        """Analyze ``text`` and return the AI result.

        Raises:
            Exception: Any failure; the pipeline classifies it.
        """
        ...
