"""Per-service circuit breaker with store-backed, atomic state transitions."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from resilient_insights.breaker.models import (
    CircuitAlert,
    CircuitBreakerRecord,
    CircuitStatus,
    HealthLabel,
)
from resilient_insights.enums import CircuitState
from resilient_insights.exceptions import CircuitOpenError, PermanentError, StaleRecordError
from resilient_insights.ports import Clock, utcnow

if TYPE_CHECKING:
    from resilient_insights.config import CircuitBreakerSettings
    from resilient_insights.ports import CircuitBreakerStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

Mutator = Callable[[CircuitBreakerRecord, datetime], None]

_MAX_ERROR_CHARS = 500
_RECENT_FAILURE_SECONDS = 60.0  # "recent failures" recommendation horizon
_HIGH_FAILURE_RATE = 0.6
_WARNING_FRACTION = 0.8  # warn once failure_count reaches this share of threshold

# Substrings identifying caller-side errors that should not trip a breaker.
_CLIENT_ERROR_MARKERS = (
    "validation failed",
    "invalid input",
    "authentication failed",
    "authorization failed",
    "bad request",
    "user cancelled",
    "quota exceeded",
)


def should_trip_circuit(error: BaseException | str) -> bool:
    """Return whether ``error`` should count against the service's breaker.

    Caller-side failures (bad input, bad credentials, cancellation) say
    nothing about the upstream service's health.
    """
    if isinstance(error, PermanentError):
        return False
    message = str(error).lower()
    return not any(marker in message for marker in _CLIENT_ERROR_MARKERS)


class CircuitBreaker:
    """Closed / open / half-open breaker keyed by service name.

    Every mutation is a read-modify-write against the injected store,
    serialized per service by an :class:`asyncio.Lock` and committed with
    compare-and-write on the record version. Conflicting writers from other
    processes surface as :class:`StaleRecordError` and are retried against
    the fresh record.
    """

    def __init__(
        self,
        store: CircuitBreakerStore,
        failure_threshold: int = 5,
        cooldown_seconds: float = 60.0,
        monitoring_window_seconds: float = 300.0,
        write_conflict_retries: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._failure_threshold = failure_threshold
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._window = timedelta(seconds=monitoring_window_seconds)
        self._write_conflict_retries = write_conflict_retries
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        settings: CircuitBreakerSettings,
        store: CircuitBreakerStore,
        clock: Clock = utcnow,
    ) -> CircuitBreaker:
        """Build a breaker from config settings."""
        return cls(
            store=store,
            failure_threshold=settings.failure_threshold,
            cooldown_seconds=settings.cooldown_seconds,
            monitoring_window_seconds=settings.monitoring_window_seconds,
            write_conflict_retries=settings.write_conflict_retries,
            clock=clock,
        )

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    # -- Reporting ---------------------------------------------------------

    async def record_failure(
        self, service: str, error: BaseException | str
    ) -> CircuitStatus:
        """Record a failed call to ``service``.

        Increments the failure count, updates ``last_failure_at`` and opens
        the circuit when the windowed failure count reaches the threshold.
        A failed half-open probe reopens the circuit immediately.

        Args:
            service: Breaker key.
            error: The failure, used for the stored ``last_error``.

        Returns:
            Status after the write.
        """
        message = str(error)[:_MAX_ERROR_CHARS]

        def _fail(record: CircuitBreakerRecord, now: datetime) -> None:
            record.failure_count += 1
            record.recent_failures.append(now)
            record.last_failure_at = now
            record.last_error = message
            record.forced = False
            if record.state is CircuitState.HALF_OPEN:
                self._trip(record, now)
            elif record.state is CircuitState.OPEN:
                record.next_retry_at = now + self._cooldown
            elif len(record.recent_failures) >= self._failure_threshold:
                self._trip(record, now)

        before, after = await self._upsert(service, _fail)
        self._log_transition(before, after, reason="failure")
        return self._status(after, self._clock())

    async def record_success(
        self, service: str, latency_ms: float | None = None
    ) -> CircuitStatus:
        """Record a successful call to ``service``.

        Resets the failure count; a successful half-open probe closes the
        circuit. Services without a record stay record-less.
        """

        def _succeed(record: CircuitBreakerRecord, now: datetime) -> None:
            record.failure_count = 0
            record.recent_failures.clear()
            if latency_ms is not None:
                record.last_latency_ms = max(latency_ms, 0.0)
            if record.state is CircuitState.HALF_OPEN:
                self._reset(record, now)
                record.forced = False

        before, after = await self._mutate(service, _succeed, create=False)
        if after is None:
            return self._status(CircuitBreakerRecord(service=service), self._clock())
        self._log_transition(before, after, reason="success")
        return self._status(after, self._clock())

    async def allow_request(self, service: str) -> bool:
        """Return whether a call to ``service`` may proceed right now.

        Closed circuits always allow. Half-open circuits grant exactly one
        probe at a time; a probe older than the cooldown is considered lost
        and a new one is granted.
        """
        record = await self._store.get(service)
        if record is None:
            return True
        now = self._clock()
        state = self._effective(record.model_copy(deep=True), now).state
        if state is CircuitState.CLOSED:
            return True
        if state is CircuitState.OPEN:
            return False

        granted = False

        def _claim_probe(record: CircuitBreakerRecord, now: datetime) -> None:
            nonlocal granted
            if record.state is not CircuitState.HALF_OPEN:
                granted = record.state is CircuitState.CLOSED
                return
            started = record.probe_started_at
            if started is None or now - started >= self._cooldown:
                record.probe_started_at = now
                granted = True

        await self._mutate(service, _claim_probe, create=False)
        logger.debug("circuit_probe_requested", service=service, granted=granted)
        return granted

    async def ensure_available(self, service: str) -> None:
        """Like :meth:`allow_request`, but raise when the call may not proceed.

        Raises:
            CircuitOpenError: If the circuit is open or its probe is taken.
        """
        if not await self.allow_request(service):
            raise CircuitOpenError(service)

    # -- Reading -----------------------------------------------------------

    async def get_status(self, service: str) -> CircuitStatus:
        """Return the effective state of ``service``'s breaker.

        An open circuit whose cooldown has elapsed reads as half-open.
        """
        record = await self._store.get(service)
        now = self._clock()
        if record is None:
            return self._status(CircuitBreakerRecord(service=service), now)
        return self._status(self._effective(record.model_copy(deep=True), now), now)

    async def all_statuses(self) -> list[CircuitStatus]:
        """Return the status of every known breaker, ordered by service."""
        now = self._clock()
        records = await self._store.list_records()
        return [
            self._status(self._effective(record.model_copy(deep=True), now), now)
            for record in sorted(records, key=lambda r: r.service)
        ]

    async def alerts(self) -> list[CircuitAlert]:
        """Return operator alerts for open or nearly-open breakers, newest first."""
        now = self._clock()
        alerts: list[CircuitAlert] = []
        for record in await self._store.list_records():
            effective = self._effective(record.model_copy(deep=True), now)
            timestamp = effective.last_failure_at or effective.updated_at
            if effective.state is CircuitState.OPEN:
                alerts.append(
                    CircuitAlert(
                        service=effective.service,
                        level="critical",
                        message=f"Circuit breaker open for {effective.service}",
                        failure_count=effective.failure_count,
                        timestamp=timestamp,
                    )
                )
            elif effective.failure_count >= self._failure_threshold * _WARNING_FRACTION:
                alerts.append(
                    CircuitAlert(
                        service=effective.service,
                        level="warning",
                        message=(
                            f"Circuit breaker for {effective.service} is close to "
                            f"opening ({effective.failure_count}/"
                            f"{self._failure_threshold} failures)"
                        ),
                        failure_count=effective.failure_count,
                        timestamp=timestamp,
                    )
                )
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    # -- Operator overrides ------------------------------------------------

    async def force_open(self, service: str) -> CircuitStatus:
        """Open ``service``'s circuit immediately, regardless of failures."""

        def _open(record: CircuitBreakerRecord, now: datetime) -> None:
            record.failure_count = max(record.failure_count, self._failure_threshold)
            record.last_failure_at = now
            self._trip(record, now)
            record.forced = True

        before, after = await self._upsert(service, _open)
        logger.warning("circuit_forced_open", service=service)
        self._log_transition(before, after, reason="forced")
        return self._status(after, self._clock())

    async def force_close(self, service: str) -> CircuitStatus:
        """Close ``service``'s circuit and clear its failure history."""

        def _close(record: CircuitBreakerRecord, now: datetime) -> None:
            record.failure_count = 0
            record.recent_failures.clear()
            self._reset(record, now)
            record.forced = True

        before, after = await self._upsert(service, _close)
        logger.info("circuit_forced_closed", service=service)
        self._log_transition(before, after, reason="forced")
        return self._status(after, self._clock())

    # -- Internals ---------------------------------------------------------

    def _lock_for(self, service: str) -> asyncio.Lock:
        lock = self._locks.get(service)
        if lock is None:
            lock = self._locks.setdefault(service, asyncio.Lock())
        return lock

    async def _mutate(
        self, service: str, mutator: Mutator, *, create: bool
    ) -> tuple[CircuitBreakerRecord | None, CircuitBreakerRecord | None]:
        """Apply ``mutator`` to the service's record atomically.

        Returns:
            ``(before, after)``; ``after`` is ``None`` when the record does
            not exist and ``create`` is false.

        Raises:
            StaleRecordError: If every compare-and-write attempt conflicted.
        """
        async with self._lock_for(service):
            for attempt in range(1, self._write_conflict_retries + 1):
                current = await self._store.get(service)
                if current is None and not create:
                    return None, None
                now = self._clock()
                working = (
                    current.model_copy(deep=True)
                    if current is not None
                    else CircuitBreakerRecord(service=service, updated_at=now)
                )
                self._effective(working, now)
                mutator(working, now)
                working.updated_at = now
                working.version = (current.version if current is not None else 0) + 1
                try:
                    stored = await self._store.compare_and_set(
                        working, None if current is None else current.version
                    )
                except StaleRecordError:
                    logger.debug(
                        "circuit_write_conflict", service=service, attempt=attempt
                    )
                    continue
                return current, stored

        msg = (
            f"Could not update circuit breaker for '{service}' after "
            f"{self._write_conflict_retries} conflicting writes."
        )
        raise StaleRecordError(msg)

    async def _upsert(
        self, service: str, mutator: Mutator
    ) -> tuple[CircuitBreakerRecord | None, CircuitBreakerRecord]:
        """Like :meth:`_mutate`, creating the record when it is missing."""
        before, after = await self._mutate(service, mutator, create=True)
        if after is None:
            msg = f"Circuit breaker record for '{service}' was not written."
            raise StaleRecordError(msg)
        return before, after

    def _effective(
        self, record: CircuitBreakerRecord, now: datetime
    ) -> CircuitBreakerRecord:
        """Prune the failure window and apply the lazy open -> half-open move."""
        cutoff = now - self._window
        record.recent_failures = [ts for ts in record.recent_failures if ts > cutoff]
        if (
            record.state is CircuitState.OPEN
            and record.next_retry_at is not None
            and now >= record.next_retry_at
        ):
            record.state = CircuitState.HALF_OPEN
            record.probe_started_at = None
        return record

    def _trip(self, record: CircuitBreakerRecord, now: datetime) -> None:
        record.state = CircuitState.OPEN
        record.next_retry_at = now + self._cooldown
        record.probe_started_at = None

    @staticmethod
    def _reset(record: CircuitBreakerRecord, now: datetime) -> None:
        record.state = CircuitState.CLOSED
        record.last_reset_at = now
        record.next_retry_at = None
        record.probe_started_at = None

    def _status(self, record: CircuitBreakerRecord, now: datetime) -> CircuitStatus:
        recent = len(record.recent_failures)
        if record.state is CircuitState.OPEN:
            health = HealthLabel.UNHEALTHY
        elif record.state is CircuitState.HALF_OPEN:
            health = HealthLabel.RECOVERING
        elif recent and recent >= self._failure_threshold / 2:
            health = HealthLabel.DEGRADED
        else:
            health = HealthLabel.HEALTHY

        seconds_until_retry: float | None = None
        if record.state is CircuitState.OPEN and record.next_retry_at is not None:
            seconds_until_retry = max(
                (record.next_retry_at - now).total_seconds(), 0.0
            )

        return CircuitStatus(
            service=record.service,
            state=record.state,
            failure_count=record.failure_count,
            recent_failure_count=recent,
            failure_threshold=self._failure_threshold,
            health=health,
            is_healthy=(
                record.state is not CircuitState.OPEN
                and record.failure_count < self._failure_threshold
            ),
            seconds_until_retry=seconds_until_retry,
            last_failure_at=record.last_failure_at,
            last_reset_at=record.last_reset_at,
            last_error=record.last_error,
            recommendations=self._recommendations(record, now),
        )

    def _recommendations(self, record: CircuitBreakerRecord, now: datetime) -> list[str]:
        recommendations: list[str] = []
        if record.state is CircuitState.OPEN:
            recommendations.append(
                "Circuit is open - investigate underlying service issues"
            )
        elif record.state is CircuitState.HALF_OPEN:
            recommendations.append(
                "Circuit is testing - monitor closely for stability"
            )
        if len(record.recent_failures) / self._failure_threshold > _HIGH_FAILURE_RATE:
            recommendations.append(
                "High failure rate detected - consider preventive measures"
            )
        if record.last_failure_at is not None and (
            (now - record.last_failure_at).total_seconds() < _RECENT_FAILURE_SECONDS
        ):
            recommendations.append("Recent failures detected - check service health")
        return recommendations

    @staticmethod
    def _log_transition(
        before: CircuitBreakerRecord | None,
        after: CircuitBreakerRecord | None,
        reason: str,
    ) -> None:
        if after is None:
            return
        previous = before.state if before is not None else CircuitState.CLOSED
        if previous is after.state:
            return
        if after.state is CircuitState.OPEN:
            logger.warning(
                "circuit_opened",
                service=after.service,
                failure_count=after.failure_count,
                previous_state=previous.value,
                reason=reason,
            )
        else:
            logger.info(
                "circuit_state_changed",
                service=after.service,
                state=after.state.value,
                previous_state=previous.value,
                reason=reason,
            )
