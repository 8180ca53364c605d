"""AI / fallback comparison and upgrade decisions."""

from resilient_insights.comparison.cost import KeywordCountCostEstimator
from resilient_insights.comparison.engine import (
    ComparisonEngine,
    calculate_ai_quality,
    compare_ai_and_fallback,
    sentiment_from_score,
)
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

__all__ = [
    "AIAnalysisResult",
    "ComparisonEngine",
    "ComparisonResult",
    "KeywordCountCostEstimator",
    "PatternConsistency",
    "PerformanceComparison",
    "QualityComparison",
    "SentimentAgreement",
    "StoredFallback",
    "UpgradeDecision",
    "UpgradeOptions",
    "UpgradeRecommendation",
    "calculate_ai_quality",
    "compare_ai_and_fallback",
    "sentiment_from_score",
]
