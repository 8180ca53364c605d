"""Fallback analysis exports."""

from resilient_insights.fallback.analyzer import analyze_sentiment_fallback
from resilient_insights.fallback.integration import (
    FallbackIntegrator,
    combined_confidence,
    should_use_fallback,
    standardize,
)
from resilient_insights.fallback.models import (
    FallbackMetadata,
    FallbackResult,
    IntegratedFallbackResult,
    PatternAnalysis,
    PatternMatch,
    PatternRecommendations,
    QualityAssessment,
    RelationshipPatterns,
    StandardizedAnalysis,
    TrendAnalysis,
)
from resilient_insights.fallback.patterns import (
    analyze_patterns,
    generate_pattern_recommendations,
    perform_advanced_pattern_analysis,
)
from resilient_insights.fallback.quality import validate_fallback_result

__all__ = [
    "FallbackIntegrator",
    "FallbackMetadata",
    "FallbackResult",
    "IntegratedFallbackResult",
    "PatternAnalysis",
    "PatternMatch",
    "PatternRecommendations",
    "QualityAssessment",
    "RelationshipPatterns",
    "StandardizedAnalysis",
    "TrendAnalysis",
    "analyze_patterns",
    "analyze_sentiment_fallback",
    "combined_confidence",
    "generate_pattern_recommendations",
    "perform_advanced_pattern_analysis",
    "should_use_fallback",
    "standardize",
    "validate_fallback_result",
]
