"""Batch failure-pattern detection over the recent metric streams."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING

import structlog

from resilient_insights.config import FailureDetectionSettings
from resilient_insights.enums import (
    SEVERITY_RANK,
    CircuitState,
    FailurePattern,
    FailureStatus,
    Severity,
)
from resilient_insights.exceptions import FailureNotFoundError
from resilient_insights.logging import generate_run_id, operation_logging_context
from resilient_insights.monitoring.detectors import (
    DETECTORS,
    Detector,
    MetricsSnapshot,
    Stream,
    merge_findings,
)
from resilient_insights.monitoring.models import (
    CircuitBreakerEvent,
    DetectionRun,
    FailureAlert,
    FailureDetection,
)
from resilient_insights.ports import Clock, utcnow

if TYPE_CHECKING:
    from resilient_insights.ports import (
        AlertSink,
        CircuitBreakerStore,
        FailureDetectionStore,
        MetricsReader,
        TaskScheduler,
    )

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

AUTO_RESOLUTION = "condition_cleared"
_STREAMS = ("error_metrics", "health_checks", "latency_samples", "circuit_breaker_events")


class FailureDetector:
    """Runs the failure-pattern detectors and manages detection lifecycle.

    Detector runs are safe to overlap: persistence goes through the store's
    atomic ``insert_if_absent``, so two runs observing the same condition
    store a single detection.

    Args:
        metrics: Source of the four metric streams.
        store: Where detections are persisted.
        alert_sink: Receives an alert for every newly stored detection.
        scheduler: When given, alerts are published through it instead of
            inline.
        breaker_store: When given, currently open breaker records count as
            open-breaker events for cascade detection.
        settings: Windows and thresholds.
        clock: Time source.
        detectors: Detector table; defaults to all five patterns.
    """

    def __init__(
        self,
        metrics: MetricsReader,
        store: FailureDetectionStore,
        *,
        alert_sink: AlertSink | None = None,
        scheduler: TaskScheduler | None = None,
        breaker_store: CircuitBreakerStore | None = None,
        settings: FailureDetectionSettings | None = None,
        clock: Clock = utcnow,
        detectors: Mapping[FailurePattern, Detector] | None = None,
    ) -> None:
        self._metrics = metrics
        self._store = store
        self._alert_sink = alert_sink
        self._scheduler = scheduler
        self._breaker_store = breaker_store
        self._settings = settings or FailureDetectionSettings()
        self._clock = clock
        self._detectors = dict(detectors if detectors is not None else DETECTORS)

    # -- Detection ---------------------------------------------------------

    async def detect_failure_patterns(self) -> list[FailureDetection]:
        """Run every detector once and return the newly stored detections."""
        run = await self.run()
        return run.detections

    async def run(self) -> DetectionRun:
        """Run every detector once and report what happened.

        A detector that raises contributes no findings and is listed in
        ``failed_detectors``; the other detectors still report.
        """
        now = self._clock()
        settings = self._settings
        since = now - timedelta(minutes=settings.analysis_window_minutes)

        with operation_logging_context("detect_failure_patterns", run_id=generate_run_id()):
            snapshot = await self._read_snapshot(since)

            findings: dict[FailurePattern, FailureDetection] = {}
            clean: set[FailurePattern] = set()
            failed: list[FailurePattern] = []
            for pattern, detector in self._detectors.items():
                try:
                    found = detector(snapshot, now, settings)
                except Exception:
                    logger.exception("failure_detector_failed", pattern=pattern.value)
                    failed.append(pattern)
                    continue
                clean.add(pattern)
                if found:
                    findings[pattern] = merge_findings(found)

            stored: list[FailureDetection] = []
            suppressed = 0
            dedup_since = now - timedelta(minutes=settings.dedup_window_minutes)
            for detection in findings.values():
                inserted = await self._store.insert_if_absent(detection, dedup_since)
                if inserted is None:
                    suppressed += 1
                    logger.debug(
                        "failure_detection_suppressed", pattern=detection.pattern.value
                    )
                    continue
                stored.append(inserted)
                logger.warning(
                    "failure_pattern_detected",
                    failure_id=inserted.id,
                    pattern=inserted.pattern.value,
                    severity=inserted.severity.value,
                    confidence=inserted.confidence,
                    affected_services=inserted.affected_services,
                )
                await self._publish(inserted)

            resolved: list[str] = []
            if settings.auto_resolve:
                resolved = await self._auto_resolve(clean - findings.keys(), now)

        logger.info(
            "failure_detection_complete",
            detected=len(stored),
            suppressed=suppressed,
            auto_resolved=len(resolved),
            failed_detectors=[p.value for p in failed],
        )
        return DetectionRun(
            ran_at=now,
            window_minutes=settings.analysis_window_minutes,
            detections=stored,
            suppressed=suppressed,
            auto_resolved=resolved,
            failed_detectors=failed,
        )

    async def _read_snapshot(self, since: datetime) -> MetricsSnapshot:
        results = await asyncio.gather(
            self._metrics.error_metrics(since),
            self._metrics.health_checks(since),
            self._metrics.latency_samples(since),
            self._metrics.circuit_breaker_events(since),
            return_exceptions=True,
        )
        streams: list[Stream] = []
        for name, result in zip(_STREAMS, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("metric_stream_read_failed", stream=name, error=str(result))
                streams.append(result)
            else:
                streams.append(list(result))

        events = streams[3]
        if self._breaker_store is not None and not isinstance(events, BaseException):
            events = await _with_open_breakers(self._breaker_store, events, since)
        return MetricsSnapshot(
            error_metrics=streams[0],
            health_checks=streams[1],
            latency_samples=streams[2],
            circuit_breaker_events=events,
        )

    async def _publish(self, detection: FailureDetection) -> None:
        if self._alert_sink is None:
            return
        alert = FailureAlert(
            failure_id=detection.id,
            pattern=detection.pattern,
            severity=detection.severity,
            affected_services=detection.affected_services,
            message=(
                f"Automated failure detection: {detection.pattern.value} affecting "
                f"{', '.join(detection.affected_services)}"
            ),
            triggered_at=self._clock(),
        )
        if self._scheduler is not None:
            self._scheduler.run_after(0, partial(self._alert_sink.publish, alert))
        else:
            await self._alert_sink.publish(alert)

    async def _auto_resolve(
        self, cleared: set[FailurePattern], now: datetime
    ) -> list[str]:
        resolved: list[str] = []
        for detection in await self._store.list_active():
            if (
                detection.status is not FailureStatus.ACTIVE
                or detection.pattern not in cleared
            ):
                continue
            await self._store.update(
                detection.model_copy(
                    update={
                        "status": FailureStatus.RESOLVED,
                        "resolved_at": now,
                        "resolution": AUTO_RESOLUTION,
                        "resolution_notes": "Condition no longer observed by detector",
                    }
                )
            )
            resolved.append(detection.id)
            logger.info(
                "failure_auto_resolved",
                failure_id=detection.id,
                pattern=detection.pattern.value,
            )
        return resolved

    # -- Lifecycle ---------------------------------------------------------

    async def resolve_failure(
        self, failure_id: str, resolution: str, notes: str | None = None
    ) -> FailureDetection:
        """Mark a detection resolved.

        Raises:
            FailureNotFoundError: If ``failure_id`` does not exist.
        """
        detection = await self._require(failure_id)
        if detection.status is FailureStatus.RESOLVED:
            logger.debug("failure_already_resolved", failure_id=failure_id)
            return detection
        updated = await self._store.update(
            detection.model_copy(
                update={
                    "status": FailureStatus.RESOLVED,
                    "resolved_at": self._clock(),
                    "resolution": resolution,
                    "resolution_notes": notes,
                }
            )
        )
        logger.info(
            "failure_resolved",
            failure_id=failure_id,
            pattern=updated.pattern.value,
            resolution=resolution,
        )
        return updated

    async def start_investigation(self, failure_id: str) -> FailureDetection:
        """Move an active detection to ``investigating``.

        Auto-resolution leaves investigated detections alone.

        Raises:
            FailureNotFoundError: If ``failure_id`` does not exist.
        """
        detection = await self._require(failure_id)
        if detection.status is not FailureStatus.ACTIVE:
            return detection
        updated = await self._store.update(
            detection.model_copy(
                update={
                    "status": FailureStatus.INVESTIGATING,
                    "investigation_started_at": self._clock(),
                }
            )
        )
        logger.info("failure_investigation_started", failure_id=failure_id)
        return updated

    async def active_failures(
        self, severity: Severity | None = None
    ) -> list[FailureDetection]:
        """Unresolved detections, most severe first, then newest first."""
        detections = [
            d
            for d in await self._store.list_active()
            if severity is None or d.severity is severity
        ]
        return sorted(
            detections,
            key=lambda d: (SEVERITY_RANK[d.severity], d.detected_at),
            reverse=True,
        )

    async def _require(self, failure_id: str) -> FailureDetection:
        detection = await self._store.get(failure_id)
        if detection is None:
            msg = f"Failure detection '{failure_id}' not found."
            raise FailureNotFoundError(msg)
        return detection


async def _with_open_breakers(
    breaker_store: CircuitBreakerStore, events: list, since: datetime
) -> Stream:
    """Append open breaker records to ``events``; a failed read fails the stream."""
    try:
        records = await breaker_store.list_records()
    except Exception as exc:
        logger.warning(
            "metric_stream_read_failed", stream="circuit_breaker_records", error=str(exc)
        )
        return exc
    return [
        *events,
        *(
            CircuitBreakerEvent(
                service=r.service,
                state=r.state,
                timestamp=r.updated_at,
                failure_count=r.failure_count,
            )
            for r in records
            if r.state is CircuitState.OPEN and r.updated_at >= since
        ),
    ]
