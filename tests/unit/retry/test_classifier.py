"""Unit tests for resilient_insights.retry - classification and backoff strategy."""

from __future__ import annotations

import random

import pytest

from resilient_insights.breaker import CircuitStatus, HealthLabel
from resilient_insights.config import RetrySettings
from resilient_insights.enums import CircuitState, ErrorKind, Priority
from resilient_insights.exceptions import PermanentError, TransientError
from resilient_insights.retry import (
    CircuitSnapshot,
    RetryClassifier,
    RetryContext,
    create_retry_context,
    retry_recommendation,
)


@pytest.fixture()
def classifier() -> RetryClassifier:
    return RetryClassifier(RetrySettings(jitter_ratio=0.0), rng=random.Random(7))


# ---- Classification -----------------------------------------------------------


class TestClassify:
    """Errors map to kinds by type, then message, then status code."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (TimeoutError(), ErrorKind.TIMEOUT),
            (ConnectionError("reset"), ErrorKind.NETWORK),
            ("Request timed out after 30s", ErrorKind.TIMEOUT),
            ("ECONNREFUSED 10.0.0.1:443", ErrorKind.NETWORK),
            ("Too Many Requests", ErrorKind.RATE_LIMIT),
            ("Invalid API key supplied", ErrorKind.AUTHENTICATION),
            ("payload is malformed", ErrorKind.VALIDATION),
            ("Invalid API key for the AI service", ErrorKind.AUTHENTICATION),
            ("401 Unauthorized: service rejected credentials", ErrorKind.AUTHENTICATION),
            ("Validation failed: service could not parse request", ErrorKind.VALIDATION),
            ("AI service overloaded", ErrorKind.SERVICE_ERROR),
            ("HTTP 429", ErrorKind.RATE_LIMIT),
            ("HTTP 401", ErrorKind.AUTHENTICATION),
            ("HTTP 504", ErrorKind.TIMEOUT),
            ("upstream answered 503", ErrorKind.SERVICE_ERROR),
            ("something odd happened", ErrorKind.SERVICE_ERROR),
        ],
    )
    def test_classification(
        self, classifier: RetryClassifier, error: BaseException | str, expected: ErrorKind
    ) -> None:
        assert classifier.classify(error) is expected

    def test_upstream_error_kind_wins(self, classifier: RetryClassifier) -> None:
        error = TransientError("connection dropped", kind=ErrorKind.RATE_LIMIT)
        assert classifier.classify(error) is ErrorKind.RATE_LIMIT

    @pytest.mark.parametrize(
        ("kind", "eligible"),
        [
            (ErrorKind.NETWORK, True),
            (ErrorKind.TIMEOUT, True),
            (ErrorKind.RATE_LIMIT, True),
            (ErrorKind.SERVICE_ERROR, True),
            (ErrorKind.VALIDATION, False),
            (ErrorKind.AUTHENTICATION, False),
        ],
    )
    def test_fallback_eligibility(self, kind: ErrorKind, eligible: bool) -> None:
        assert RetryClassifier.is_fallback_eligible(kind) is eligible


# ---- Strategy -----------------------------------------------------------------


class TestCalculateRetryStrategy:
    """Retry decisions, caps and delays."""

    def test_network_first_retry_delay(self, classifier: RetryClassifier) -> None:
        decision = classifier.calculate_retry_strategy(
            RetryContext(error="connection reset", attempt=0)
        )
        assert decision.should_retry
        assert decision.error_kind is ErrorKind.NETWORK
        # base 1000 * 2^0 * kind multiplier 2.0 * upstream multiplier 2.0
        assert decision.delay_ms == 4000
        assert decision.priority is Priority.NORMAL

    def test_rate_limit_has_minimum_delay(self, classifier: RetryClassifier) -> None:
        decision = classifier.calculate_retry_strategy(
            RetryContext(error="rate limit exceeded", attempt=0)
        )
        assert decision.should_retry
        assert decision.delay_ms == 5000

    def test_delay_capped(self) -> None:
        classifier = RetryClassifier(
            RetrySettings(jitter_ratio=0.0, base_delay_ms=1000, max_delay_ms=2000)
        )
        decision = classifier.calculate_retry_strategy(
            RetryContext(error="timeout", attempt=1)
        )
        assert decision.delay_ms == 2000

    @pytest.mark.parametrize("message", ["validation failed", "HTTP 403 forbidden"])
    def test_permanent_kinds_never_retry(
        self, classifier: RetryClassifier, message: str
    ) -> None:
        decision = classifier.calculate_retry_strategy(RetryContext(error=message))
        assert not decision.should_retry
        assert not decision.fallback_eligible
        assert "not retryable" in decision.reason

    def test_open_circuit_blocks_retry(self, classifier: RetryClassifier) -> None:
        decision = classifier.calculate_retry_strategy(
            RetryContext(
                error="connection reset",
                circuit_snapshot=CircuitSnapshot(state=CircuitState.OPEN, failure_count=5),
            )
        )
        assert not decision.should_retry
        assert decision.fallback_eligible
        assert decision.reason == "circuit breaker is open"

    def test_attempts_exhausted(self, classifier: RetryClassifier) -> None:
        context = RetryContext(error="internal server error", attempt=3)
        assert classifier.calculate_retry_strategy(context).should_retry

        decision = classifier.calculate_retry_strategy(
            context.model_copy(update={"attempt": 4})
        )
        assert not decision.should_retry
        assert decision.reason == "retry attempts exhausted"
        assert decision.max_attempts == 4

    def test_priority_escalates_after_threshold(self, classifier: RetryClassifier) -> None:
        decision = classifier.calculate_retry_strategy(
            RetryContext(error="connection reset", attempt=1, priority=Priority.NORMAL)
        )
        assert decision.priority is Priority.HIGH

    def test_urgent_priority_does_not_escalate_further(
        self, classifier: RetryClassifier
    ) -> None:
        decision = classifier.calculate_retry_strategy(
            RetryContext(error="connection reset", attempt=2, priority=Priority.URGENT)
        )
        assert decision.priority is Priority.URGENT

    def test_delays_strictly_increase_with_jitter(self) -> None:
        classifier = RetryClassifier(RetrySettings(jitter_ratio=0.1), rng=random.Random(1))
        delays = [
            classifier.calculate_retry_strategy(
                RetryContext(error="internal server error", attempt=attempt)
            ).delay_ms
            for attempt in range(4)
        ]
        assert delays == sorted(set(delays))

    def test_max_attempts_respects_priority_limit(self, classifier: RetryClassifier) -> None:
        assert classifier.max_attempts_for(ErrorKind.TIMEOUT, Priority.LOW) == 3
        assert classifier.max_attempts_for(ErrorKind.TIMEOUT, Priority.URGENT) == 5
        assert classifier.max_attempts_for(ErrorKind.VALIDATION, Priority.URGENT) == 0


# ---- Helpers ------------------------------------------------------------------


class TestCreateRetryContext:
    """create_retry_context captures breaker and error kind."""

    def test_captures_kind_and_snapshot(self) -> None:
        status = CircuitStatus(
            service="ai_analysis",
            state=CircuitState.OPEN,
            failure_count=6,
            failure_threshold=5,
            health=HealthLabel.UNHEALTHY,
            is_healthy=False,
        )
        context = create_retry_context(
            PermanentError("bad schema"), attempt=2, circuit_status=status
        )
        assert context.error_kind is ErrorKind.VALIDATION
        assert context.attempt == 2
        assert context.circuit_snapshot == CircuitSnapshot(
            state=CircuitState.OPEN, failure_count=6
        )

    def test_plain_error_leaves_kind_unset(self) -> None:
        context = create_retry_context(RuntimeError("boom"))
        assert context.error_kind is None
        assert context.circuit_snapshot is None
        assert context.error == "boom"


class TestRetryRecommendation:
    """Operator-facing summaries."""

    def test_retry_summary(self, classifier: RetryClassifier) -> None:
        decision = classifier.calculate_retry_strategy(RetryContext(error="timeout"))
        assert retry_recommendation(decision).startswith("Retry in ")

    def test_permanent_summary(self, classifier: RetryClassifier) -> None:
        decision = classifier.calculate_retry_strategy(RetryContext(error="unauthorized"))
        assert "Do not retry" in retry_recommendation(decision)

    def test_fallback_summary(self, classifier: RetryClassifier) -> None:
        decision = classifier.calculate_retry_strategy(
            RetryContext(error="timeout", attempt=10)
        )
        assert retry_recommendation(decision).startswith("Use fallback analysis")
