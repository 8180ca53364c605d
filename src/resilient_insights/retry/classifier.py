"""Error classification and retry/backoff strategy for upstream AI calls."""

from __future__ import annotations

import random
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from resilient_insights.config import ErrorKindPolicy, RetrySettings
from resilient_insights.enums import (
    PERMANENT_KINDS,
    CircuitState,
    ErrorKind,
    Priority,
)
from resilient_insights.exceptions import UpstreamError
from resilient_insights.retry.models import CircuitSnapshot, RetryContext, RetryDecision

if TYPE_CHECKING:
    from resilient_insights.breaker.models import CircuitStatus

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# Checked in order; the first kind with a matching marker wins.
_MESSAGE_MARKERS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.TIMEOUT, ("timeout", "timed out", "deadline exceeded")),
    (
        ErrorKind.NETWORK,
        ("network", "connection", "econnreset", "econnrefused", "dns", "socket"),
    ),
    (
        ErrorKind.RATE_LIMIT,
        (
            "rate limit",
            "rate-limit",
            "ratelimit",
            "quota",
            "too many requests",
            "throttl",
        ),
    ),
    (
        ErrorKind.AUTHENTICATION,
        (
            "unauthorized",
            "forbidden",
            "authentic",
            "authoriz",
            "api key",
            "api_key",
            "credential",
            "permission denied",
        ),
    ),
    (
        ErrorKind.VALIDATION,
        ("validation", "invalid", "bad request", "malformed", "unprocessable"),
    ),
    (
        ErrorKind.SERVICE_ERROR,
        ("service", "server error", "internal error", "overload", "bad gateway"),
    ),
)

_STATUS_CODE_RE = re.compile(r"\b([45]\d{2})\b")
_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.AUTHENTICATION,
    403: ErrorKind.AUTHENTICATION,
    404: ErrorKind.VALIDATION,
    408: ErrorKind.TIMEOUT,
    413: ErrorKind.VALIDATION,
    422: ErrorKind.VALIDATION,
    429: ErrorKind.RATE_LIMIT,
    504: ErrorKind.TIMEOUT,
}

_FALLBACK_ELIGIBLE = frozenset(
    {ErrorKind.NETWORK, ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT, ErrorKind.SERVICE_ERROR}
)
_UPSTREAM_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.SERVICE_ERROR}
)
_ESCALATION = {
    Priority.LOW: Priority.NORMAL,
    Priority.NORMAL: Priority.HIGH,
    Priority.HIGH: Priority.URGENT,
}


def create_retry_context(
    error: BaseException | str,
    attempt: int = 0,
    circuit_status: CircuitStatus | None = None,
    priority: Priority = Priority.NORMAL,
    created_at: datetime | None = None,
    queued_at: datetime | None = None,
    analysis_id: str | None = None,
) -> RetryContext:
    """Build a :class:`RetryContext` for a failed attempt.

    Args:
        error: The failure raised by the AI call.
        attempt: Retries already performed for this unit of work.
        circuit_status: Breaker status read right after the failure.
        priority: Current queue priority.
        created_at: When the unit of work was created.
        queued_at: When it was (re)queued; defaults to now.
        analysis_id: Optional identifier for log correlation.

    Returns:
        A populated context; ``error_kind`` is set when ``error`` already
        carries one.
    """
    now = datetime.now(tz=UTC)
    snapshot = (
        CircuitSnapshot(
            state=circuit_status.state, failure_count=circuit_status.failure_count
        )
        if circuit_status is not None
        else None
    )
    return RetryContext(
        attempt=attempt,
        error=str(error),
        error_kind=error.kind if isinstance(error, UpstreamError) else None,
        circuit_snapshot=snapshot,
        priority=priority,
        original_priority=priority,
        analysis_id=analysis_id,
        created_at=created_at or now,
        queued_at=queued_at or now,
    )


def retry_recommendation(decision: RetryDecision) -> str:
    """Return a one-line operator-facing summary of a retry decision."""
    if decision.should_retry:
        return (
            f"Retry in {decision.delay_ms / 1000:.1f}s at {decision.priority.value} "
            f"priority (attempt {decision.attempt + 1} of {decision.max_attempts})"
        )
    if decision.error_kind in PERMANENT_KINDS:
        return "Do not retry - fix the request or credentials before resubmitting"
    if decision.fallback_eligible:
        return "Use fallback analysis and schedule an upgrade once the service recovers"
    return "Do not retry"


class RetryClassifier:
    """Classifies AI call failures and decides retry, backoff and fallback.

    Args:
        settings: Backoff and attempt limits; defaults apply when omitted.
        rng: Random source for jitter. Inject a seeded instance for
            reproducible delays.
    """

    def __init__(
        self,
        settings: RetrySettings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings or RetrySettings()
        self._rng = rng or random.Random()

    # -- Classification ----------------------------------------------------

    def classify(self, error: BaseException | str) -> ErrorKind:
        """Classify ``error`` into an :class:`ErrorKind`.

        Exceptions carrying a kind (the package's ``UpstreamError`` family)
        and builtin timeout/connection errors are classified by type; every
        other error by its message, then by any HTTP status code it contains.
        Unrecognised errors are treated as upstream service errors.
        """
        if isinstance(error, UpstreamError):
            return error.kind
        if isinstance(error, TimeoutError):
            return ErrorKind.TIMEOUT
        if isinstance(error, ConnectionError):
            return ErrorKind.NETWORK

        message = str(error).lower()
        for kind, markers in _MESSAGE_MARKERS:
            if any(marker in message for marker in markers):
                return kind

        for match in _STATUS_CODE_RE.finditer(message):
            code = int(match.group(1))
            if code in _STATUS_KINDS:
                return _STATUS_KINDS[code]
            if code >= 500:
                return ErrorKind.SERVICE_ERROR

        return ErrorKind.SERVICE_ERROR

    @staticmethod
    def is_fallback_eligible(kind: ErrorKind) -> bool:
        """Return whether an exhausted failure of ``kind`` may use fallback.

        Validation and authentication failures are caller or configuration
        defects and must surface instead of being masked by fallback output.
        """
        return kind in _FALLBACK_ELIGIBLE

    # -- Strategy ----------------------------------------------------------

    def max_attempts_for(self, kind: ErrorKind, priority: Priority) -> int:
        """Return the retry cap for ``kind`` at ``priority``."""
        policy = self._policy(kind)
        limit = self._settings.priority_attempt_limits.get(priority, policy.max_attempts)
        return min(policy.max_attempts, limit)

    def calculate_retry_strategy(self, context: RetryContext) -> RetryDecision:
        """Decide whether and when to retry a failed attempt.

        Rules, in order: validation and authentication never retry; an open
        circuit snapshot never retries; the attempt cap is the smaller of the
        kind's and the (escalated) priority's limit. Delays grow
        exponentially with a proportional jitter bounded well below the
        growth factor, so successive delays for the same kind strictly
        increase until the configured cap.

        Args:
            context: The failed attempt.

        Returns:
            The retry decision.
        """
        kind = context.error_kind or self.classify(context.error)
        priority = self._escalate(context.priority, kind, context.attempt)
        max_attempts = self.max_attempts_for(kind, priority)
        eligible = self.is_fallback_eligible(kind)

        def _stop(reason: str) -> RetryDecision:
            decision = RetryDecision(
                should_retry=False,
                error_kind=kind,
                attempt=context.attempt,
                max_attempts=max_attempts,
                priority=priority,
                fallback_eligible=eligible,
                reason=reason,
            )
            logger.info(
                "retry_declined",
                error_kind=kind.value,
                attempt=context.attempt,
                reason=reason,
                analysis_id=context.analysis_id,
            )
            return decision

        if kind in PERMANENT_KINDS:
            return _stop(f"{kind.value} errors are not retryable")
        snapshot = context.circuit_snapshot
        if snapshot is not None and snapshot.state is CircuitState.OPEN:
            return _stop("circuit breaker is open")
        if context.attempt >= max_attempts:
            return _stop("retry attempts exhausted")

        delay_ms = self._delay_ms(kind, context.attempt, priority)
        logger.info(
            "retry_scheduled",
            error_kind=kind.value,
            attempt=context.attempt,
            max_attempts=max_attempts,
            delay_ms=delay_ms,
            priority=priority.value,
            analysis_id=context.analysis_id,
        )
        return RetryDecision(
            should_retry=True,
            delay_ms=delay_ms,
            error_kind=kind,
            attempt=context.attempt,
            max_attempts=max_attempts,
            priority=priority,
            fallback_eligible=eligible,
            reason=f"retrying {kind.value} error",
        )

    # -- Internals ---------------------------------------------------------

    def _policy(self, kind: ErrorKind) -> ErrorKindPolicy:
        return self._settings.kind_policies.get(kind, ErrorKindPolicy())

    def _escalate(self, priority: Priority, kind: ErrorKind, attempt: int) -> Priority:
        threshold = self._policy(kind).escalate_after_attempts
        if threshold is None or attempt < threshold:
            return priority
        return _ESCALATION.get(priority, priority)

    def _delay_ms(self, kind: ErrorKind, attempt: int, priority: Priority) -> int:
        settings = self._settings
        raw = settings.base_delay_ms * (2**attempt) * self._policy(kind).backoff_multiplier
        if kind in _UPSTREAM_KINDS:
            raw *= settings.service_error_multiplier
        else:
            raw *= settings.client_error_multiplier
        raw *= settings.priority_delay_factors.get(priority, 1.0)
        if kind is ErrorKind.RATE_LIMIT:
            raw = max(raw, settings.rate_limit_min_delay_ms)
        jitter = self._rng.uniform(0.0, raw * settings.jitter_ratio)
        return int(min(raw + jitter, settings.max_delay_ms))
