"""Trustworthiness scoring for fallback analysis results.

Scores start from a neutral 0.5 and move with five checks:
    - Confidence (very low penalised, high rewarded)
    - Signal diversity (keywords, rules, patterns)
    - Processing time
    - Insight richness
A result is valid when it scores at least 0.3 with fewer than three issues.
"""

from __future__ import annotations

import structlog

from resilient_insights.fallback.models import FallbackResult, QualityAssessment

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_BASE_SCORE = 0.5
_MIN_VALID_SCORE = 0.3
_MAX_ISSUES = 3

ISSUE_LOW_CONFIDENCE = "Very low confidence score"
ISSUE_NO_SIGNALS = "No clear sentiment signals detected"
ISSUE_SLOW = "Slow processing time for fallback analysis"
ISSUE_NO_INSIGHTS = "No insights generated"


def _check_confidence(result: FallbackResult, issues: list[str]) -> float:
    if result.confidence_score < 0.2:
        issues.append(ISSUE_LOW_CONFIDENCE)
        return -0.2
    if result.confidence_score > 0.6:
        return 0.1
    return 0.0


def _check_signals(result: FallbackResult, issues: list[str]) -> float:
    signal_types = result.metadata.signal_types
    if signal_types >= 2:
        return 0.2
    if signal_types == 0:
        issues.append(ISSUE_NO_SIGNALS)
        return -0.3
    return 0.0


def _check_timing(result: FallbackResult, issues: list[str]) -> float:
    if result.processing_time_ms > 5000:
        issues.append(ISSUE_SLOW)
        return -0.1
    if result.processing_time_ms < 100:
        return 0.1
    return 0.0


def _check_insights(result: FallbackResult, issues: list[str]) -> float:
    if not result.insights:
        issues.append(ISSUE_NO_INSIGHTS)
        return -0.1
    if len(result.insights) >= 2:
        return 0.1
    return 0.0


def validate_fallback_result(result: FallbackResult) -> QualityAssessment:
    """Score a fallback result for trustworthiness.

    Args:
        result: Output of the rule-based analyzer.

    Returns:
        Assessment with a score clamped to ``[0, 1]`` and the issues found.
    """
    issues: list[str] = []
    score = _BASE_SCORE
    for check in (_check_confidence, _check_signals, _check_timing, _check_insights):
        score += check(result, issues)

    score = round(max(0.0, min(1.0, score)), 4)
    assessment = QualityAssessment(
        is_valid=score >= _MIN_VALID_SCORE and len(issues) < _MAX_ISSUES,
        quality_score=score,
        issues=issues,
    )
    logger.debug(
        "fallback_quality_assessed",
        quality_score=assessment.quality_score,
        is_valid=assessment.is_valid,
        issues=len(issues),
    )
    return assessment
