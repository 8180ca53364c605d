"""Models produced by the fallback analysis path."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from resilient_insights.enums import FallbackTrigger, Sentiment

# ---------------------------------------------------------------------------
# Rule-based sentiment
# ---------------------------------------------------------------------------


class FallbackMetadata(BaseModel):
    """Which signals produced a fallback result."""

    model_config = ConfigDict(frozen=True)

    keywords_matched: list[str] = Field(default_factory=list)
    rules_fired: list[str] = Field(default_factory=list)
    pattern_matches: list[str] = Field(default_factory=list)
    fallback_reason: str = "API unavailable"
    word_count: int = Field(default=0, ge=0)
    truncated: bool = Field(
        default=False, description="Analysis stopped early at the deadline."
    )

    @property
    def signal_types(self) -> int:
        """Number of distinct signal types (keywords, rules, patterns) present."""
        return sum(
            1
            for signals in (self.keywords_matched, self.rules_fired, self.pattern_matches)
            if signals
        )


class FallbackResult(BaseModel):
    """Deterministic sentiment result produced without the AI service."""

    model_config = ConfigDict(frozen=True)

    sentiment: Sentiment
    confidence_score: float = Field(ge=0.0, le=1.0)
    mood_suggestion: str | None = None
    insights: list[str] = Field(default_factory=list)
    method: str = "keyword_sentiment"
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    metadata: FallbackMetadata = Field(default_factory=FallbackMetadata)


class QualityAssessment(BaseModel):
    """Trustworthiness of a fallback result."""

    is_valid: bool
    quality_score: float = Field(ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Relationship pattern analysis
# ---------------------------------------------------------------------------


class PatternMatch(BaseModel):
    """One categorized relationship pattern found in the text."""

    name: str
    category: str
    sentiment: Sentiment
    confidence: float = Field(ge=0.0, le=1.0)
    insight: str
    weight: float


class TrendAnalysis(BaseModel):
    """Category movement relative to previous entries."""

    improving: list[str] = Field(default_factory=list)
    declining: list[str] = Field(default_factory=list)
    stable: list[str] = Field(default_factory=list)


class PatternAnalysis(BaseModel):
    """Categorized relationship-pattern analysis of one text."""

    matches: list[PatternMatch] = Field(default_factory=list)
    category_scores: dict[str, float] = Field(default_factory=dict)
    dominant_category: str | None = None
    overall_sentiment: Sentiment = Sentiment.NEUTRAL
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    relationship_insights: list[str] = Field(default_factory=list)
    trend_analysis: TrendAnalysis | None = None
    contextual_insights: list[str] = Field(default_factory=list)


class PatternRecommendations(BaseModel):
    """Suggestions derived from a pattern analysis."""

    actionable_insights: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)
    strengths_to_leverage: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Integrated fallback output
# ---------------------------------------------------------------------------


class RelationshipPatterns(BaseModel):
    """Pattern summary in the same shape the AI service reports."""

    recurring_themes: list[str] = Field(default_factory=list)
    emotional_triggers: list[str] = Field(default_factory=list)
    communication_style: str = "unknown"
    relationship_dynamics: list[str] = Field(default_factory=list)


class StandardizedAnalysis(BaseModel):
    """Fallback output normalized to the AI result's vocabulary."""

    sentiment_score: float = Field(ge=-1.0, le=1.0)
    emotional_keywords: list[str] = Field(default_factory=list)
    confidence_level: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    patterns: RelationshipPatterns = Field(default_factory=RelationshipPatterns)


class IntegratedFallbackResult(BaseModel):
    """Combined sentiment, pattern and quality output for one fallback run."""

    trigger: FallbackTrigger
    sentiment: FallbackResult
    patterns: PatternAnalysis
    recommendations: PatternRecommendations
    quality: QualityAssessment
    combined_confidence: float = Field(ge=0.0, le=1.0)
    should_store: bool
    standardized: StandardizedAnalysis
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
