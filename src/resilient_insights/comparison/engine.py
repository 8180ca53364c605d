"""Compares AI and fallback analyses and decides when to upgrade a fallback.

A fallback result stored while the AI service was unavailable is a
candidate for re-analysis once the service recovers. The engine weighs
three things before recommending that:
    - How far the two analyses disagree (sentiment, quality, themes)
    - What the upgrade would cost
    - Whether the AI service's circuit breaker is still open
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from resilient_insights.comparison.cost import KeywordCountCostEstimator
from resilient_insights.comparison.models import (
    AIAnalysisResult,
    ComparisonResult,
    PatternConsistency,
    PerformanceComparison,
    QualityComparison,
    SentimentAgreement,
    StoredFallback,
    UpgradeDecision,
    UpgradeOptions,
    UpgradeRecommendation,
)
from resilient_insights.config import UpgradeSettings
from resilient_insights.enums import CircuitState, Priority, Sentiment
from resilient_insights.fallback.models import IntegratedFallbackResult

if TYPE_CHECKING:
    from resilient_insights.breaker.circuit_breaker import CircuitBreaker
    from resilient_insights.ports import CostEstimator, FallbackResultStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_SENTIMENT_THRESHOLD = 0.2
_SIMILAR_QUALITY = 0.1
_DEFAULT_AI_PROCESSING_MS = 5000.0
_MIN_QUALITY = 0.1
_MAX_QUALITY = 0.95
_SUFFICIENT_FALLBACK_QUALITY = 0.6
_LOW_FALLBACK_QUALITY = 0.3
_WORD = re.compile(r"\w+")


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def sentiment_from_score(score: float) -> Sentiment:
    """Categorize a ``[-1, 1]`` sentiment score."""
    if score > _SENTIMENT_THRESHOLD:
        return Sentiment.POSITIVE
    if score < -_SENTIMENT_THRESHOLD:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _keyword_adjustment(count: int) -> float:
    if count > 5:
        return 0.1
    if count < 2:
        return -0.1
    return 0.0


def calculate_ai_quality(result: AIAnalysisResult) -> float:
    """Estimate the quality of an AI result from its own signals.

    Confidence, response speed, keyword richness and the presence of
    pattern analysis each move the score from a neutral 0.5.
    """
    quality = 0.5 + (result.confidence - 0.5) * 0.3

    processing_ms = (
        result.processing_time_ms
        if result.processing_time_ms is not None
        else _DEFAULT_AI_PROCESSING_MS
    )
    if processing_ms > 10_000:
        quality -= 0.1
    elif processing_ms < 3000:
        quality += 0.1

    quality += _keyword_adjustment(len(result.emotional_keywords))
    if result.patterns is not None:
        quality += 0.15
    return round(_clamp(quality, _MIN_QUALITY, _MAX_QUALITY), 4)


def _confidence_reliability(
    agreement: bool, ai_confidence: float, fallback_confidence: float
) -> float:
    reliability = 0.5
    if agreement:
        reliability += 0.3
    if ai_confidence > 0.7 and fallback_confidence > 0.7:
        reliability += 0.2
    if ai_confidence < 0.3 or fallback_confidence < 0.3:
        reliability -= 0.2
    return round(_clamp(reliability, 0.1, 0.9), 4)


def _keyword_overlap(ai_keywords: Sequence[str], fallback_keywords: Sequence[str]) -> float:
    ai = {kw.lower() for kw in ai_keywords}
    fallback = {kw.lower() for kw in fallback_keywords}
    if not ai and not fallback:
        return 1.0
    if not ai or not fallback:
        return 0.0
    # Substring-tolerant: "argue" and "arguing" count as the same keyword.
    matched = sum(1 for kw in ai if any(kw in other or other in kw for other in fallback))
    return round(min(1.0, matched / len(ai | fallback)), 4)


def _theme_alignment(ai: AIAnalysisResult, fallback: IntegratedFallbackResult) -> float:
    if ai.patterns is None:
        return 0.5
    ai_themes = {theme.lower() for theme in ai.recurring_themes}
    fallback_themes = {
        theme.lower() for theme in fallback.standardized.patterns.recurring_themes
    }
    if not ai_themes and not fallback_themes:
        return 1.0
    if not ai_themes or not fallback_themes:
        return 0.3
    overlap = sum(
        1
        for theme in ai_themes
        if any(theme in other or other in theme for other in fallback_themes)
    )
    return round(min(1.0, overlap / max(len(ai_themes), len(fallback_themes))), 4)


def _significant_words(texts: Sequence[str]) -> set[str]:
    return {
        word
        for text in texts
        for word in _WORD.findall(text.lower())
        if len(word) > 3
    }


def _insight_similarity(ai: AIAnalysisResult, fallback: IntegratedFallbackResult) -> float:
    ai_words = _significant_words([ai.reasoning] if ai.reasoning else [])
    fallback_words = _significant_words(
        [*fallback.sentiment.insights, *fallback.patterns.relationship_insights]
    )
    if not ai_words and not fallback_words:
        return 1.0
    if not ai_words or not fallback_words:
        return 0.2
    return round(len(ai_words & fallback_words) / len(ai_words | fallback_words), 4)


def _contradictions(
    ai: AIAnalysisResult,
    ai_sentiment: Sentiment,
    fallback: IntegratedFallbackResult,
) -> list[str]:
    found: list[str] = []
    fallback_sentiment = fallback.sentiment.sentiment
    if (
        ai_sentiment is not fallback_sentiment
        and Sentiment.NEUTRAL not in (ai_sentiment, fallback_sentiment)
    ):
        found.append(
            f"Sentiment mismatch: AI detected {ai_sentiment.value}, "
            f"fallback detected {fallback_sentiment.value}"
        )
    if ai.confidence > 0.8 and fallback.combined_confidence < 0.3:
        found.append(
            f"Confidence mismatch: AI very confident "
            f"({round(ai.confidence * 100)}%), fallback uncertain "
            f"({round(fallback.combined_confidence * 100)}%)"
        )
    return found


def _recommend(
    agreement: SentimentAgreement,
    quality: QualityComparison,
    consistency: PatternConsistency,
) -> UpgradeRecommendation:
    if agreement.agreement and quality.fallback_quality > _SUFFICIENT_FALLBACK_QUALITY:
        return UpgradeRecommendation(
            should_upgrade=False,
            confidence=0.8,
            reason="Fallback quality sufficient with sentiment agreement",
            urgency="low",
            estimated_improvement=0.1,
        )
    if not agreement.agreement and agreement.confidence_delta > 0.3:
        return UpgradeRecommendation(
            should_upgrade=True,
            confidence=0.8,
            reason="Significant sentiment disagreement with higher AI confidence",
            urgency="high",
            estimated_improvement=0.4,
        )
    quality_gap = quality.ai_quality - quality.fallback_quality
    if quality_gap > 0.2:
        return UpgradeRecommendation(
            should_upgrade=True,
            confidence=0.7,
            reason="AI analysis significantly higher quality",
            urgency="medium",
            estimated_improvement=round(quality_gap, 4),
        )
    if consistency.theme_alignment < 0.3 and quality.fallback_quality < 0.4:
        return UpgradeRecommendation(
            should_upgrade=True,
            confidence=0.6,
            reason="Poor theme alignment and low fallback quality",
            urgency="medium",
            estimated_improvement=0.3,
        )
    return UpgradeRecommendation(
        should_upgrade=False,
        confidence=0.5,
        reason="Minimal improvement expected from upgrade",
        urgency="low",
        estimated_improvement=0.05,
    )


def compare_ai_and_fallback(
    ai_result: AIAnalysisResult, fallback: IntegratedFallbackResult
) -> ComparisonResult:
    """Compare an AI result with the fallback result for the same entry.

    Args:
        ai_result: Output of the AI service.
        fallback: Integrated fallback output for the same text.

    Returns:
        Agreement, quality, pattern consistency, an upgrade recommendation
        and a performance summary.
    """
    ai_sentiment = sentiment_from_score(ai_result.sentiment_score)
    fallback_sentiment = fallback.sentiment.sentiment
    agreement = SentimentAgreement(
        agreement=ai_sentiment is fallback_sentiment,
        ai_sentiment=ai_sentiment,
        fallback_sentiment=fallback_sentiment,
        confidence_delta=round(ai_result.confidence - fallback.combined_confidence, 4),
        score_distance=round(
            abs(ai_result.sentiment_score - fallback.standardized.sentiment_score), 4
        ),
    )

    ai_quality = calculate_ai_quality(ai_result)
    fallback_quality = fallback.quality.quality_score
    delta = ai_quality - fallback_quality
    if abs(delta) < _SIMILAR_QUALITY:
        advantage = "similar"
    else:
        advantage = "ai" if delta > 0 else "fallback"
    quality = QualityComparison(
        ai_quality=ai_quality,
        fallback_quality=fallback_quality,
        advantage=advantage,
        confidence_reliability=_confidence_reliability(
            agreement.agreement, ai_result.confidence, fallback.combined_confidence
        ),
    )

    consistency = PatternConsistency(
        keyword_overlap=_keyword_overlap(
            ai_result.emotional_keywords, fallback.standardized.emotional_keywords
        ),
        theme_alignment=_theme_alignment(ai_result, fallback),
        insight_similarity=_insight_similarity(ai_result, fallback),
        contradictions=_contradictions(ai_result, ai_sentiment, fallback),
    )

    ai_ms = (
        ai_result.processing_time_ms
        if ai_result.processing_time_ms is not None
        else _DEFAULT_AI_PROCESSING_MS
    )
    performance = PerformanceComparison(
        ai_processing_ms=ai_ms,
        fallback_processing_ms=fallback.processing_time_ms,
        ai_cost=ai_result.api_cost,
        speed_advantage="fallback" if fallback.processing_time_ms < ai_ms else "ai",
    )

    return ComparisonResult(
        sentiment_agreement=agreement,
        quality_comparison=quality,
        pattern_consistency=consistency,
        upgrade_recommendation=_recommend(agreement, quality, consistency),
        performance=performance,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ComparisonEngine:
    """Upgrade decisions for stored fallback results.

    Args:
        store: Where fallback results and recent AI results live.
        circuit_breaker: Breaker guarding the AI service.
        cost_estimator: Prices a re-analysis; keyword-count proxy by default.
        settings: Quality and cost thresholds.
        service_name: Breaker key of the AI service.
    """

    def __init__(
        self,
        store: FallbackResultStore,
        circuit_breaker: CircuitBreaker,
        cost_estimator: CostEstimator | None = None,
        settings: UpgradeSettings | None = None,
        service_name: str = "ai_analysis",
    ) -> None:
        self._store = store
        self._circuit_breaker = circuit_breaker
        self._cost_estimator = cost_estimator or KeywordCountCostEstimator()
        self._settings = settings or UpgradeSettings()
        self._service_name = service_name

    def compare_ai_and_fallback(
        self, ai_result: AIAnalysisResult, fallback: IntegratedFallbackResult
    ) -> ComparisonResult:
        return compare_ai_and_fallback(ai_result, fallback)

    async def predict_ai_quality(self, record: StoredFallback) -> float:
        """Predict the AI quality for ``record`` from the user's recent AI results."""
        recent = await self._store.recent_ai_results(
            record.user_id, self._settings.recent_ai_sample_size
        )
        if recent:
            predicted = sum(calculate_ai_quality(r) for r in recent) / len(recent)
        else:
            predicted = self._settings.default_predicted_quality
        keywords = len(record.result.sentiment.metadata.keywords_matched)
        predicted += _keyword_adjustment(keywords)
        return round(_clamp(predicted, _MIN_QUALITY, _MAX_QUALITY), 4)

    async def should_upgrade_fallback_result(
        self, fallback_id: str, options: UpgradeOptions | None = None
    ) -> UpgradeDecision:
        """Decide whether a stored fallback result should be re-analyzed by the AI.

        The circuit breaker is read last, immediately before returning, so a
        breaker that opened while the decision was being computed still
        vetoes the upgrade.

        Args:
            fallback_id: Id of the stored fallback result.
            options: Force flag and threshold overrides.

        Returns:
            The decision with its confidence and queueing priority.
        """
        options = options or UpgradeOptions()
        record = await self._store.get(fallback_id)
        if record is None:
            logger.warning("upgrade_fallback_not_found", fallback_id=fallback_id)
            return UpgradeDecision(
                should_upgrade=False,
                reason="Fallback result not found",
                confidence=0.0,
            )
        if record.upgraded:
            return UpgradeDecision(
                should_upgrade=False,
                reason="Fallback result already upgraded",
                confidence=1.0,
            )

        cost = self._cost_estimator.estimate(record)
        if options.force_upgrade:
            decision = UpgradeDecision(
                should_upgrade=True,
                reason="Force upgrade requested",
                confidence=1.0,
                priority=Priority.HIGH,
                estimated_benefit=0.3,
                estimated_cost=cost,
            )
        else:
            cost_threshold = (
                options.cost_threshold
                if options.cost_threshold is not None
                else self._settings.cost_threshold
            )
            quality_threshold = (
                options.quality_threshold
                if options.quality_threshold is not None
                else self._settings.quality_threshold
            )
            if cost > cost_threshold:
                decision = UpgradeDecision(
                    should_upgrade=False,
                    reason=(
                        f"Estimated cost ({cost:.3f}) exceeds threshold "
                        f"({cost_threshold})"
                    ),
                    confidence=0.7,
                    estimated_cost=cost,
                )
            elif record.ai_result is not None:
                decision = self._decide_from_comparison(record, record.ai_result, cost)
            else:
                decision = await self._decide_from_prediction(
                    record, cost, quality_threshold
                )

        if decision.should_upgrade:
            status = await self._circuit_breaker.get_status(self._service_name)
            if status.state is CircuitState.OPEN:
                decision = UpgradeDecision(
                    should_upgrade=False,
                    reason="Circuit breaker still open - wait for recovery",
                    confidence=0.8,
                    estimated_benefit=decision.estimated_benefit,
                    estimated_cost=cost,
                )

        logger.info(
            "upgrade_decision",
            fallback_id=fallback_id,
            should_upgrade=decision.should_upgrade,
            priority=decision.priority.value,
            confidence=decision.confidence,
            reason=decision.reason,
        )
        return decision

    def _decide_from_comparison(
        self, record: StoredFallback, ai_result: AIAnalysisResult, cost: float
    ) -> UpgradeDecision:
        recommendation = compare_ai_and_fallback(
            ai_result, record.result
        ).upgrade_recommendation
        if recommendation.urgency == "high":
            priority = (
                Priority.URGENT
                if record.quality_score < _LOW_FALLBACK_QUALITY
                else Priority.HIGH
            )
        elif recommendation.urgency == "medium":
            priority = Priority.NORMAL
        else:
            priority = Priority.LOW
        return UpgradeDecision(
            should_upgrade=recommendation.should_upgrade,
            reason=recommendation.reason,
            confidence=recommendation.confidence,
            priority=priority if recommendation.should_upgrade else Priority.LOW,
            estimated_benefit=max(0.0, recommendation.estimated_improvement),
            estimated_cost=cost,
        )

    async def _decide_from_prediction(
        self, record: StoredFallback, cost: float, quality_threshold: float
    ) -> UpgradeDecision:
        predicted = await self.predict_ai_quality(record)
        fallback_quality = record.quality_score
        benefit = round(max(0.0, predicted - fallback_quality), 4)

        if fallback_quality < _LOW_FALLBACK_QUALITY:
            should, reason, confidence, priority = (
                True,
                "Fallback quality very low - significant improvement expected",
                0.9,
                Priority.HIGH,
            )
        elif predicted > quality_threshold and benefit > 0.2:
            should, reason, confidence, priority = (
                True,
                "High predicted AI quality with significant improvement potential",
                0.8,
                Priority.NORMAL,
            )
        elif benefit < 0.1:
            should, reason, confidence, priority = (
                False,
                "Minimal quality improvement expected from upgrade",
                0.6,
                Priority.LOW,
            )
        elif benefit > 0.15:
            should, reason, confidence, priority = (
                True,
                "Moderate improvement expected with acceptable cost",
                0.5,
                Priority.NORMAL,
            )
        else:
            should, reason, confidence, priority = (
                False,
                "Improvement insufficient to justify upgrade cost",
                0.5,
                Priority.LOW,
            )
        return UpgradeDecision(
            should_upgrade=should,
            reason=reason,
            confidence=confidence,
            priority=priority,
            estimated_benefit=benefit,
            estimated_cost=cost,
        )
