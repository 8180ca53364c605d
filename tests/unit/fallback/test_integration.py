"""Unit tests for resilient_insights.fallback.integration - gating and standardization."""

from __future__ import annotations

import pytest

from resilient_insights.config import FallbackSettings
from resilient_insights.enums import CircuitState, ErrorKind, FallbackTrigger, Sentiment
from resilient_insights.fallback import (
    FallbackIntegrator,
    combined_confidence,
    should_use_fallback,
)

RICH_ENTRY = (
    "We talked openly and honestly about our trust issues tonight. I feel so happy "
    "and grateful that we worked it out together, and we agreed to keep improving "
    "our relationship. Really thankful for the support!"
)


class TestShouldUseFallback:
    """Routing an exhausted or blocked failure to fallback."""

    @pytest.mark.parametrize("kind", [ErrorKind.VALIDATION, ErrorKind.AUTHENTICATION])
    def test_permanent_kinds_never_fall_back(self, kind: ErrorKind) -> None:
        assert should_use_fallback(kind, retry_count=10, circuit_state=CircuitState.OPEN) is None

    def test_open_circuit(self) -> None:
        trigger = should_use_fallback(
            ErrorKind.NETWORK, retry_count=0, circuit_state=CircuitState.OPEN
        )
        assert trigger is FallbackTrigger.CIRCUIT_BREAKER_OPEN

    def test_retries_exhausted(self) -> None:
        trigger = should_use_fallback(ErrorKind.TIMEOUT, retry_count=3, max_retries=3)
        assert trigger is FallbackTrigger.RETRY_EXHAUSTED

    def test_rate_limit_falls_back_immediately(self) -> None:
        trigger = should_use_fallback(ErrorKind.RATE_LIMIT, retry_count=0)
        assert trigger is FallbackTrigger.API_UNAVAILABLE

    def test_retry_still_possible(self) -> None:
        assert should_use_fallback(ErrorKind.SERVICE_ERROR, retry_count=1) is None


class TestCombinedConfidence:
    """Blended confidence stays in [0.1, 0.95]."""

    def test_bonuses_applied(self) -> None:
        assert combined_confidence(0.6, 0.6, 0.8) == pytest.approx(0.81)

    def test_floor(self) -> None:
        assert combined_confidence(0.0, 0.0, 0.0) == 0.1

    def test_ceiling(self) -> None:
        assert combined_confidence(1.0, 1.0, 1.0) == 0.95


class TestFallbackIntegrator:
    """The full fallback path for one entry."""

    def test_rich_entry_is_stored(self) -> None:
        result = FallbackIntegrator().execute(
            RICH_ENTRY, FallbackTrigger.RETRY_EXHAUSTED, relationship_context="partner"
        )
        assert result.trigger is FallbackTrigger.RETRY_EXHAUSTED
        assert result.sentiment.sentiment is Sentiment.POSITIVE
        assert result.sentiment.metadata.fallback_reason == "Retry attempts exhausted"
        assert result.quality.is_valid
        assert result.should_store
        assert 0.1 <= result.combined_confidence <= 0.95

    def test_standardized_output(self) -> None:
        result = FallbackIntegrator().execute(RICH_ENTRY, relationship_context="partner")
        standardized = result.standardized
        assert standardized.sentiment_score > 0.5
        assert "happy" in standardized.emotional_keywords
        assert "trust" in standardized.emotional_keywords
        assert all(not kw.startswith(("+", "-")) for kw in standardized.emotional_keywords)
        assert standardized.confidence_level == result.combined_confidence
        assert "Relationship context: partner" in standardized.reasoning
        assert standardized.patterns.communication_style == (
            "Open and constructive communication approach"
        )

    def test_explicit_reason_overrides_trigger(self) -> None:
        result = FallbackIntegrator().execute("ok", reason="maintenance window")
        assert result.sentiment.metadata.fallback_reason == "maintenance window"

    def test_default_reason_from_settings(self) -> None:
        integrator = FallbackIntegrator(FallbackSettings(default_reason="Provider outage"))
        unavailable = integrator.execute("ok", FallbackTrigger.API_UNAVAILABLE)
        assert unavailable.sentiment.metadata.fallback_reason == "Provider outage"
        exhausted = integrator.execute("ok", FallbackTrigger.RETRY_EXHAUSTED)
        assert exhausted.sentiment.metadata.fallback_reason == "Retry attempts exhausted"

    def test_empty_entry_is_not_stored(self) -> None:
        result = FallbackIntegrator().execute("")
        assert result.sentiment.sentiment is Sentiment.NEUTRAL
        assert result.standardized.sentiment_score == 0.0
        assert result.standardized.patterns.recurring_themes == [
            "General relationship reflection"
        ]
        assert not result.should_store

    def test_storage_threshold_from_settings(self) -> None:
        strict = FallbackIntegrator(FallbackSettings(min_store_confidence=0.99))
        assert not strict.execute(RICH_ENTRY).should_store

    def test_previous_entries_feed_trends(self) -> None:
        result = FallbackIntegrator().execute(
            RICH_ENTRY, previous_entries=["We had a heated fight again"]
        )
        assert result.patterns.trend_analysis is not None
