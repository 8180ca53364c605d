"""Combines sentiment, pattern and quality analysis into one gated fallback result."""

from __future__ import annotations

import time
from collections.abc import Sequence

import structlog

from resilient_insights.config import FallbackSettings
from resilient_insights.enums import CircuitState, ErrorKind, FallbackTrigger, Sentiment
from resilient_insights.fallback.analyzer import analyze_sentiment_fallback
from resilient_insights.fallback.models import (
    FallbackResult,
    IntegratedFallbackResult,
    PatternAnalysis,
    RelationshipPatterns,
    StandardizedAnalysis,
)
from resilient_insights.fallback.patterns import (
    generate_pattern_recommendations,
    perform_advanced_pattern_analysis,
)
from resilient_insights.fallback.quality import validate_fallback_result
from resilient_insights.retry.classifier import RetryClassifier

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_MIN_COMBINED = 0.1
_MAX_COMBINED = 0.95
_DYNAMICS_THRESHOLD = 0.5
_TRIGGER_REASONS: dict[FallbackTrigger, str] = {
    FallbackTrigger.CIRCUIT_BREAKER_OPEN: "Circuit breaker open",
    FallbackTrigger.RETRY_EXHAUSTED: "Retry attempts exhausted",
    FallbackTrigger.MANUAL_REQUEST: "Manual fallback request",
}


def should_use_fallback(
    error_kind: ErrorKind,
    retry_count: int,
    circuit_state: CircuitState = CircuitState.CLOSED,
    max_retries: int = 3,
) -> FallbackTrigger | None:
    """Decide whether a failed AI call should be answered by fallback analysis.

    Args:
        error_kind: Classified kind of the latest failure.
        retry_count: Retries already performed.
        circuit_state: Current breaker state for the AI service.
        max_retries: Retries after which the call counts as exhausted.

    Returns:
        The fallback trigger, or ``None`` when the failure must surface
        (not fallback-eligible) or should still be retried.
    """
    if not RetryClassifier.is_fallback_eligible(error_kind):
        return None
    if circuit_state is CircuitState.OPEN:
        return FallbackTrigger.CIRCUIT_BREAKER_OPEN
    if retry_count >= max_retries:
        return FallbackTrigger.RETRY_EXHAUSTED
    if error_kind is ErrorKind.RATE_LIMIT:
        return FallbackTrigger.API_UNAVAILABLE
    return None


def combined_confidence(
    sentiment_confidence: float, pattern_confidence: float, quality_score: float
) -> float:
    """Blend the three analysis confidences into one score in ``[0.1, 0.95]``."""
    combined = (
        sentiment_confidence * 0.4 + pattern_confidence * 0.3 + quality_score * 0.3
    )
    if sentiment_confidence > 0.5 and pattern_confidence > 0.5:
        combined += 0.1
    if quality_score > 0.7:
        combined += 0.05
    return round(max(_MIN_COMBINED, min(_MAX_COMBINED, combined)), 4)


class FallbackIntegrator:
    """Runs the full fallback path for one entry.

    Args:
        settings: Analysis budget, input cap and storage threshold.
    """

    def __init__(self, settings: FallbackSettings | None = None) -> None:
        self._settings = settings or FallbackSettings()

    def execute(
        self,
        text: str,
        trigger: FallbackTrigger = FallbackTrigger.API_UNAVAILABLE,
        *,
        reason: str | None = None,
        relationship_context: str | None = None,
        previous_entries: Sequence[str] | None = None,
    ) -> IntegratedFallbackResult:
        """Analyze ``text`` without the AI service.

        Args:
            text: Entry text.
            trigger: Why the fallback path was taken.
            reason: Free-text reason stored on the sentiment result;
                derived from ``trigger`` when omitted, falling back to the
                configured ``default_reason``.
            relationship_context: Optional context mentioned in reasoning.
            previous_entries: Earlier entry texts for trend analysis.

        Returns:
            The integrated result. ``should_store`` is true only when the
            combined confidence reaches the storage threshold and the
            quality assessment is valid.
        """
        started = time.perf_counter()
        settings = self._settings
        sentiment = analyze_sentiment_fallback(
            text,
            reason or _TRIGGER_REASONS.get(trigger, settings.default_reason),
            budget_ms=settings.budget_ms,
            max_chars=settings.max_text_chars,
        )
        patterns = perform_advanced_pattern_analysis(
            (text or "")[: settings.max_text_chars], previous_entries
        )
        quality = validate_fallback_result(sentiment)
        confidence = combined_confidence(
            sentiment.confidence_score, patterns.confidence_score, quality.quality_score
        )
        should_store = confidence >= settings.min_store_confidence and quality.is_valid

        result = IntegratedFallbackResult(
            trigger=trigger,
            sentiment=sentiment,
            patterns=patterns,
            recommendations=generate_pattern_recommendations(patterns),
            quality=quality,
            combined_confidence=confidence,
            should_store=should_store,
            standardized=standardize(sentiment, patterns, confidence, relationship_context),
            processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        logger.info(
            "fallback_analysis_complete",
            trigger=trigger.value,
            sentiment=sentiment.sentiment.value,
            combined_confidence=confidence,
            quality_score=quality.quality_score,
            should_store=should_store,
            processing_time_ms=result.processing_time_ms,
        )
        return result


# ---------------------------------------------------------------------------
# Standardized output
# ---------------------------------------------------------------------------


def standardize(
    sentiment: FallbackResult,
    patterns: PatternAnalysis,
    confidence: float,
    relationship_context: str | None = None,
) -> StandardizedAnalysis:
    """Express a fallback analysis in the AI result's vocabulary."""
    if sentiment.sentiment is Sentiment.POSITIVE:
        score = 0.5 + sentiment.confidence_score * 0.5
    elif sentiment.sentiment is Sentiment.NEGATIVE:
        score = -0.5 - sentiment.confidence_score * 0.5
    else:
        score = 0.0

    keywords = list(
        dict.fromkeys(
            kw.lstrip("+-").removeprefix("rel:")
            for kw in sentiment.metadata.keywords_matched
        )
    )
    insights = [*sentiment.insights, *patterns.relationship_insights]
    return StandardizedAnalysis(
        sentiment_score=round(score, 4),
        emotional_keywords=keywords,
        confidence_level=confidence,
        reasoning=_reasoning(sentiment, patterns, insights, relationship_context),
        patterns=RelationshipPatterns(
            recurring_themes=_recurring_themes(patterns),
            emotional_triggers=_emotional_triggers(sentiment, patterns),
            communication_style=_communication_style(patterns),
            relationship_dynamics=_relationship_dynamics(patterns),
        ),
    )


def _reasoning(
    sentiment: FallbackResult,
    patterns: PatternAnalysis,
    insights: list[str],
    relationship_context: str | None,
) -> str:
    parts = [
        f"Sentiment analysis ({sentiment.method}): {sentiment.sentiment.value} with "
        f"{round(sentiment.confidence_score * 100)}% confidence",
        f"Analysis identified {len(sentiment.metadata.keywords_matched)} "
        "sentiment indicators",
        f"Pattern analysis found {len(patterns.matches)} relationship patterns",
    ]
    if patterns.dominant_category:
        parts.append(f"Primary focus area: {patterns.dominant_category}")
    if relationship_context:
        parts.append(f"Relationship context: {relationship_context}")
    if insights:
        parts.append(f"Key insights: {'; '.join(insights[:2])}")
    return ". ".join(parts) + "."


def _recurring_themes(patterns: PatternAnalysis) -> list[str]:
    themes = [
        match.insight
        for match in patterns.matches
        if match.sentiment is Sentiment.POSITIVE
        or abs(patterns.category_scores.get(match.category, 0.0)) > _DYNAMICS_THRESHOLD
    ][:3]
    return themes or ["General relationship reflection"]


def _emotional_triggers(
    sentiment: FallbackResult, patterns: PatternAnalysis
) -> list[str]:
    labels = {
        "conflict": "Conflict situations",
        "communication": "Communication difficulties",
        "stress": "External stressors",
    }
    triggers = [
        labels[match.category]
        for match in patterns.matches
        if match.sentiment is Sentiment.NEGATIVE and match.category in labels
    ]
    if "question_uncertainty" in sentiment.metadata.rules_fired:
        triggers.append("Uncertainty and doubt")
    return list(dict.fromkeys(triggers)) or ["Relationship challenges"]


def _communication_style(patterns: PatternAnalysis) -> str:
    matches = [m for m in patterns.matches if m.category == "communication"]
    if not matches:
        return "Communication style unclear from current entry"
    positive = sum(1 for m in matches if m.sentiment is Sentiment.POSITIVE)
    negative = len(matches) - positive
    if positive > negative:
        return "Open and constructive communication approach"
    if negative > positive:
        return "Communication challenges and barriers present"
    return "Mixed communication patterns observed"


def _relationship_dynamics(patterns: PatternAnalysis) -> list[str]:
    dynamics: list[str] = []
    for category, score in patterns.category_scores.items():
        if abs(score) <= _DYNAMICS_THRESHOLD:
            continue
        if score > 0:
            dynamics.append(f"Positive {category} dynamics")
        else:
            dynamics.append(f"{category.capitalize()} challenges")
    return dynamics or ["Standard relationship interactions"]
