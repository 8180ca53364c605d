"""Models for AI results, stored fallbacks and their comparison."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from resilient_insights.enums import FallbackTrigger, Priority, Sentiment
from resilient_insights.fallback.models import (
    IntegratedFallbackResult,
    RelationshipPatterns,
)

Advantage = Literal["ai", "fallback", "similar"]
Urgency = Literal["low", "medium", "high"]


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class AIAnalysisResult(BaseModel):
    """Result returned by the upstream AI analysis service."""

    sentiment_score: float = Field(ge=-1.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    emotional_keywords: list[str] = Field(default_factory=list)
    reasoning: str = ""
    patterns: RelationshipPatterns | None = None
    processing_time_ms: float | None = Field(default=None, ge=0.0)
    api_cost: float = Field(default=0.0, ge=0.0)
    user_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def recurring_themes(self) -> list[str]:
        return self.patterns.recurring_themes if self.patterns else []


class StoredFallback(BaseModel):
    """A fallback result persisted until it is upgraded to an AI result."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    entry_id: str
    user_id: str | None = None
    text: str = ""
    relationship_context: str | None = None
    trigger: FallbackTrigger
    result: IntegratedFallbackResult
    ai_result: AIAnalysisResult | None = None
    upgraded: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    upgraded_at: datetime | None = None

    @property
    def quality_score(self) -> float:
        return self.result.quality.quality_score


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------


class SentimentAgreement(BaseModel):
    agreement: bool
    ai_sentiment: Sentiment
    fallback_sentiment: Sentiment
    confidence_delta: float
    score_distance: float = Field(ge=0.0, le=2.0)


class QualityComparison(BaseModel):
    ai_quality: float = Field(ge=0.0, le=1.0)
    fallback_quality: float = Field(ge=0.0, le=1.0)
    advantage: Advantage
    confidence_reliability: float = Field(ge=0.0, le=1.0)


class PatternConsistency(BaseModel):
    keyword_overlap: float = Field(ge=0.0, le=1.0)
    theme_alignment: float = Field(ge=0.0, le=1.0)
    insight_similarity: float = Field(ge=0.0, le=1.0)
    contradictions: list[str] = Field(default_factory=list)


class UpgradeRecommendation(BaseModel):
    should_upgrade: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    urgency: Urgency = "low"
    estimated_improvement: float = 0.0


class PerformanceComparison(BaseModel):
    ai_processing_ms: float
    fallback_processing_ms: float
    ai_cost: float
    fallback_cost: float = 0.0
    speed_advantage: Literal["ai", "fallback"]


class ComparisonResult(BaseModel):
    """Side-by-side evaluation of an AI result and a fallback result."""

    sentiment_agreement: SentimentAgreement
    quality_comparison: QualityComparison
    pattern_consistency: PatternConsistency
    upgrade_recommendation: UpgradeRecommendation
    performance: PerformanceComparison


# ---------------------------------------------------------------------------
# Upgrade decisions
# ---------------------------------------------------------------------------


class UpgradeOptions(BaseModel):
    """Per-call overrides for :meth:`ComparisonEngine.should_upgrade_fallback_result`."""

    force_upgrade: bool = False
    quality_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    cost_threshold: float | None = Field(default=None, ge=0.0)


class UpgradeDecision(BaseModel):
    """Whether a stored fallback result should be re-analyzed by the AI."""

    should_upgrade: bool
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    priority: Priority = Priority.LOW
    estimated_benefit: float = Field(default=0.0, ge=0.0)
    estimated_cost: float = Field(default=0.0, ge=0.0)
