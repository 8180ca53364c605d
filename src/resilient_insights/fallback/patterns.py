"""Categorized relationship-pattern analysis for fallback results.

Complements the sentiment analyzer with category-level signals
(communication, intimacy, conflict, growth, stress, celebration), trend
analysis against previous entries, and recommendations.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from resilient_insights.enums import Sentiment
from resilient_insights.fallback.models import (
    PatternAnalysis,
    PatternMatch,
    PatternRecommendations,
    TrendAnalysis,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

CATEGORIES: tuple[str, ...] = (
    "communication",
    "intimacy",
    "conflict",
    "growth",
    "stress",
    "celebration",
)

_TREND_THRESHOLD = 0.5
_RECOMMENDATION_THRESHOLD = 0.5


@dataclass(frozen=True, slots=True)
class RelationshipPattern:
    """A categorized relationship pattern with a signed weight."""

    name: str
    pattern: re.Pattern[str]
    category: str
    sentiment: Sentiment
    confidence: float
    insight: str
    weight: float

    def to_match(self) -> PatternMatch:
        return PatternMatch(
            name=self.name,
            category=self.category,
            sentiment=self.sentiment,
            confidence=self.confidence,
            insight=self.insight,
            weight=self.weight,
        )


def _rp(
    name: str,
    regex: str,
    category: str,
    confidence: float,
    insight: str,
    weight: float,
) -> RelationshipPattern:
    return RelationshipPattern(
        name=name,
        pattern=re.compile(regex, re.IGNORECASE),
        category=category,
        sentiment=Sentiment.POSITIVE if weight > 0 else Sentiment.NEGATIVE,
        confidence=confidence,
        insight=insight,
        weight=weight,
    )


# ---------------------------------------------------------------------------
# Pattern library
# ---------------------------------------------------------------------------

RELATIONSHIP_PATTERNS: tuple[RelationshipPattern, ...] = (
    # communication
    _rp(
        "active_listening",
        r"\b(listen|heard|understand|acknowledge|validate)\b.*"
        r"\b(feelings|thoughts|perspective|point of view)\b",
        "communication",
        0.8,
        "Active listening and validation in communication",
        1.5,
    ),
    _rp(
        "open_dialogue",
        r"\b(talked|discussed|shared|opened up|communicated)\b.*"
        r"\b(openly|honestly|deeply|freely)\b",
        "communication",
        0.7,
        "Open and honest communication",
        1.3,
    ),
    _rp(
        "communication_breakdown",
        r"\b(can't talk|won't listen|shut down|silent treatment|avoiding|ignoring)\b",
        "communication",
        0.8,
        "Communication barriers or breakdown",
        -1.4,
    ),
    _rp(
        "misunderstanding",
        r"\b(misunderstood|confused|mixed signals|unclear|assumption)\b",
        "communication",
        0.6,
        "Misunderstandings affecting communication",
        -1.0,
    ),
    # intimacy
    _rp(
        "emotional_intimacy",
        r"\b(vulnerable|intimate|close|connected|bonded|deep)\b.*"
        r"\b(conversation|moment|sharing|experience)\b",
        "intimacy",
        0.8,
        "Emotional intimacy and connection",
        1.6,
    ),
    _rp(
        "physical_affection",
        r"\b(hug|kiss|cuddle|hold hands|touch|caress|embrace)\b",
        "intimacy",
        0.7,
        "Physical affection and intimacy",
        1.2,
    ),
    _rp(
        "quality_time",
        r"\b(spent time|enjoyed|together|date|adventure|memory|experience)\b.*"
        r"\b(partner|spouse|loved one)\b",
        "intimacy",
        0.6,
        "Quality time and shared experiences",
        1.1,
    ),
    _rp(
        "emotional_distance",
        r"\b(distant|cold|withdrawn|detached|unavailable|disconnected)\b",
        "intimacy",
        0.7,
        "Emotional distance or disconnection",
        -1.3,
    ),
    _rp(
        "intimacy_concerns",
        r"\b(lack of|missing|no|little)\b.*\b(intimacy|closeness|connection|affection)\b",
        "intimacy",
        0.6,
        "Concerns about intimacy levels",
        -1.1,
    ),
    # conflict
    _rp(
        "constructive_conflict",
        r"\b(disagreed|different views)\b.*"
        r"\b(respectfully|calmly|worked through|resolved)\b",
        "conflict",
        0.7,
        "Constructive conflict resolution",
        1.4,
    ),
    _rp(
        "compromise",
        r"\b(compromise|middle ground|meet halfway|both|agreed|solution)\b",
        "conflict",
        0.8,
        "Successful compromise and problem-solving",
        1.5,
    ),
    _rp(
        "heated_argument",
        r"\b(fight|argue|yell|scream|shouting|heated|explosive)\b",
        "conflict",
        0.8,
        "Intense conflict or heated argument",
        -1.5,
    ),
    _rp(
        "recurring_issues",
        r"\b(again|same|always|never|every time|constantly|repeatedly)\b.*"
        r"\b(problem|issue|fight|argument)\b",
        "conflict",
        0.7,
        "Recurring relationship issues",
        -1.3,
    ),
    _rp(
        "unresolved_tension",
        r"\b(tension|awkward|uncomfortable|unresolved|hanging|avoiding)\b",
        "conflict",
        0.6,
        "Unresolved tension or avoidance",
        -1.1,
    ),
    # growth
    _rp(
        "relationship_growth",
        r"\b(growing|improving|progress|development|stronger|better)\b.*"
        r"\b(relationship|us|we|together)\b",
        "growth",
        0.7,
        "Relationship growth and improvement",
        1.3,
    ),
    _rp(
        "learning_together",
        r"\b(learned|discovered|realized|understood)\b.*"
        r"\b(about each other|together|as a couple)\b",
        "growth",
        0.6,
        "Learning and discovery in relationship",
        1.2,
    ),
    _rp(
        "personal_growth",
        r"\b(growing|changing|developing|improving|becoming)\b.*"
        r"\b(person|individual|better|stronger)\b",
        "growth",
        0.5,
        "Personal growth affecting relationship",
        1.0,
    ),
    _rp(
        "stagnation",
        r"\b(stuck|same|routine|boring|monotonous|stagnant|unchanging)\b",
        "growth",
        0.6,
        "Feeling of stagnation or lack of growth",
        -1.0,
    ),
    # stress
    _rp(
        "external_stress",
        r"\b(work|job|family|money|health|stress|pressure)\b.*"
        r"\b(affecting|impacting|difficult|challenging)\b.*\b(relationship|us)\b",
        "stress",
        0.6,
        "External stressors affecting relationship",
        -1.1,
    ),
    _rp(
        "stress_support",
        r"\b(support|helped|there for|comfort|understanding)\b.*"
        r"\b(stress|difficult|challenge|problem)\b",
        "stress",
        0.7,
        "Mutual support during stressful times",
        1.2,
    ),
    _rp(
        "overwhelmed",
        r"\b(overwhelmed|exhausted|tired|drained|can't cope|too much)\b",
        "stress",
        0.6,
        "Feeling overwhelmed or exhausted",
        -1.0,
    ),
    # celebration
    _rp(
        "milestone_celebration",
        r"\b(anniversary|birthday|achievement|success|celebration|milestone|special)\b",
        "celebration",
        0.8,
        "Celebrating milestones or achievements",
        1.4,
    ),
    _rp(
        "gratitude_expression",
        r"\b(grateful|thankful|appreciate|blessed|fortunate|lucky)\b.*"
        r"\b(partner|relationship|love|support)\b",
        "celebration",
        0.7,
        "Expressing gratitude for relationship",
        1.3,
    ),
    _rp(
        "shared_joy",
        r"\b(happy|joy|delight|excitement|fun|laughter)\b.*\b(together|shared|both|we)\b",
        "celebration",
        0.6,
        "Shared joy and positive experiences",
        1.1,
    ),
)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def analyze_patterns(
    text: str,
    library: Sequence[RelationshipPattern] = RELATIONSHIP_PATTERNS,
) -> PatternAnalysis:
    """Match ``text`` against the categorized relationship-pattern library.

    Args:
        text: Entry text (any case).
        library: Patterns to test, in order.

    Returns:
        Matches, per-category scores, dominant category, overall sentiment,
        confidence and combination insights.
    """
    matched = [p for p in library if p.pattern.search(text or "")]

    category_scores: dict[str, float] = {}
    for pattern in matched:
        category_scores[pattern.category] = round(
            category_scores.get(pattern.category, 0.0) + pattern.weight, 4
        )

    dominant: str | None = None
    best = 0.0
    for category, score in category_scores.items():
        if abs(score) > abs(best):
            best = score
            dominant = category

    total_weight = sum(abs(p.weight) for p in matched)
    signed = sum(p.weight for p in matched)
    normalized = signed / total_weight if total_weight else 0.0
    if normalized > 0.2:
        overall = Sentiment.POSITIVE
    elif normalized < -0.2:
        overall = Sentiment.NEGATIVE
    else:
        overall = Sentiment.NEUTRAL

    mean_weight = total_weight / len(matched) if matched else 0.0
    confidence = min(len(matched) * 0.15 + mean_weight * 0.1, 0.9)

    return PatternAnalysis(
        matches=[p.to_match() for p in matched],
        category_scores=category_scores,
        dominant_category=dominant,
        overall_sentiment=overall,
        confidence_score=round(confidence, 4),
        relationship_insights=_relationship_insights(
            [p.name for p in matched], category_scores, dominant
        ),
    )


def _relationship_insights(
    names: list[str], category_scores: dict[str, float], dominant: str | None
) -> list[str]:
    if not names:
        return ["No specific relationship patterns detected"]

    insights: list[str] = []
    if dominant is not None:
        if category_scores[dominant] > 0:
            insights.append(f"Strong positive patterns in {dominant} detected")
        else:
            insights.append(f"Challenges in {dominant} area identified")

    positive = [c for c, s in category_scores.items() if s > 0]
    negative = [c for c, s in category_scores.items() if s < 0]
    if len(positive) >= 2:
        insights.append(
            f"Multiple relationship strengths identified: {', '.join(positive)}"
        )
    if len(negative) >= 2:
        insights.append(f"Several areas may need attention: {', '.join(negative)}")

    found = set(names)
    if {"active_listening", "emotional_intimacy"} <= found:
        insights.append(
            "Strong communication foundation supporting emotional connection"
        )
    if {"heated_argument", "compromise"} <= found:
        insights.append(
            "Conflict resolution skills evident despite intense disagreements"
        )
    if {"external_stress", "stress_support"} <= found:
        insights.append("Relationship showing resilience under external pressure")
    if "recurring_issues" in found and "compromise" not in found:
        insights.append(
            "Recurring issues may benefit from new conflict resolution approaches"
        )
    if found & {"relationship_growth", "learning_together"}:
        insights.append("Positive growth trajectory in relationship development")
    if "stagnation" in found and not positive:
        insights.append(
            "Consider exploring new activities or approaches to break routine patterns"
        )
    return insights


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


def perform_advanced_pattern_analysis(
    text: str, previous_entries: Sequence[str] | None = None
) -> PatternAnalysis:
    """Analyze ``text`` and compare its category scores to previous entries.

    Without previous entries the result carries a note that trends need
    more data instead of a trend analysis.
    """
    current = analyze_patterns(text)
    if not previous_entries:
        return current.model_copy(
            update={
                "contextual_insights": [
                    "Analysis based on current entry only",
                    "Consider multiple entries for trend analysis",
                ]
            }
        )

    previous = [analyze_patterns(entry) for entry in previous_entries]
    trends = _analyze_trends(current, previous)
    return current.model_copy(
        update={
            "trend_analysis": trends,
            "contextual_insights": _contextual_insights(trends, len(previous) + 1),
        }
    )


def _analyze_trends(
    current: PatternAnalysis, previous: list[PatternAnalysis]
) -> TrendAnalysis:
    trends = TrendAnalysis()
    for category in CATEGORIES:
        history = [
            p.category_scores[category]
            for p in previous
            if p.category_scores.get(category, 0.0) != 0.0
        ]
        if not history:
            continue
        change = current.category_scores.get(category, 0.0) - sum(history) / len(
            history
        )
        if change > _TREND_THRESHOLD:
            trends.improving.append(category)
        elif change < -_TREND_THRESHOLD:
            trends.declining.append(category)
        else:
            trends.stable.append(category)
    return trends


def _contextual_insights(trends: TrendAnalysis, entry_count: int) -> list[str]:
    insights: list[str] = []
    if trends.improving:
        insights.append(f"Positive trends observed in: {', '.join(trends.improving)}")
    if trends.declining:
        insights.append(
            f"Areas showing decline: {', '.join(trends.declining)} - may need attention"
        )
    if trends.stable:
        insights.append(f"Consistent patterns in: {', '.join(trends.stable)}")

    direction = len(trends.improving) - len(trends.declining)
    if direction > 1:
        insights.append("Overall relationship trajectory appears positive")
    elif direction < -1:
        insights.append(
            "Multiple areas showing challenges - consider focusing on core "
            "relationship strengths"
        )
    else:
        insights.append(
            "Relationship showing mixed patterns - normal variation in "
            "relationship dynamics"
        )

    if entry_count >= 5:
        insights.append(
            f"Analysis based on {entry_count} recent entries - high confidence in patterns"
        )
    else:
        insights.append(
            f"Analysis based on {entry_count} entries - consider more data points "
            "for deeper insights"
        )
    return insights


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def generate_pattern_recommendations(
    analysis: PatternAnalysis,
) -> PatternRecommendations:
    """Turn category scores into focus areas, strengths and next steps."""
    scores = analysis.category_scores
    strong = {c for c, s in scores.items() if s > _RECOMMENDATION_THRESHOLD}
    weak = {c for c, s in scores.items() if s < -_RECOMMENDATION_THRESHOLD}
    recs = PatternRecommendations()

    if "communication" in strong:
        recs.strengths_to_leverage.append(
            "Strong communication skills - use this foundation to address other areas"
        )
    if "communication" in weak:
        recs.focus_areas.append("communication")
        recs.actionable_insights.append(
            "Consider setting aside dedicated time for open, uninterrupted conversation"
        )
    if "conflict" in weak:
        recs.focus_areas.append("conflict resolution")
        recs.actionable_insights.append(
            'Explore conflict resolution techniques like active listening and "I" '
            "statements"
        )
    if "intimacy" in weak:
        recs.focus_areas.append("emotional/physical intimacy")
        recs.actionable_insights.append(
            "Schedule regular one-on-one time without distractions"
        )
    if "growth" in strong:
        recs.strengths_to_leverage.append(
            "Growth mindset - continue learning and developing together"
        )
    if "stress" in weak:
        recs.focus_areas.append("stress management")
        recs.actionable_insights.append(
            "Develop strategies to support each other during stressful periods"
        )

    if not recs.actionable_insights:
        recs.actionable_insights.extend(
            [
                "Consider regular relationship check-ins to maintain connection",
                "Focus on expressing appreciation and gratitude daily",
            ]
        )
    return recs
